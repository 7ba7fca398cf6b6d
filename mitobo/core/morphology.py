# mitobo/core/morphology.py
# Contour direction arrays: curvature, protrusion cleanup, per-region protrusion counts
# Pure callables with no GUI dependencies - safe for headless testing and parallelism

from __future__ import annotations
from dataclasses import dataclass
from typing import List, MutableSequence, Optional, Sequence, Tuple
import math
import numpy as np
import cv2

K_MIN = 2

# ---------- Data Model ----------

@dataclass
class RegionMorphology:
    # identity
    image_index: int
    label: int

    # contour
    contour_length: int               # number of outer contour pixels
    margin_roughness: float           # mean |curvature| minus that of a circle

    # protrusions (+1 runs) and indentations (-1 runs) after cleanup
    sign_changes: int
    protrusion_count: int
    indentation_count: int
    protrusion_fraction: float        # share of contour pixels on protrusions

    # mean distance between the two inflection points bounding a segment
    avg_protrusion_equator: float = 0.0
    avg_indentation_equator: float = 0.0


# ---------- Direction arrays ----------

def _check_directions(directions: Sequence[int]) -> None:
    bad = {int(v) for v in directions} - {-1, 1}
    if bad:
        raise ValueError(f"Direction arrays may only contain -1 and 1, got {sorted(bad)}")


def _cyclic_runs(directions: Sequence[int]) -> List[Tuple[int, int, int]]:
    """Maximal cyclic runs as (start, length, sign). Wrap-around runs start before index 0."""
    n = len(directions)
    if n == 0:
        return []
    first = next((i for i in range(n) if directions[i] != directions[i - 1]), None)
    if first is None:
        return [(0, n, int(directions[0]))]

    runs: List[Tuple[int, int, int]] = []
    start, length = first, 1
    for step in range(1, n):
        idx = (first + step) % n
        if directions[idx] == directions[start]:
            length += 1
        else:
            runs.append((start, length, int(directions[start])))
            start, length = idx, 1
    runs.append((start, length, int(directions[start])))
    return runs


def remove_short_protrusions(directions: MutableSequence[int], min_length: int) -> None:
    """
    Flip every cyclic run of ones shorter than min_length to -1, in place.

    Runs of -1 (indentations) are never touched. Flipping a run only merges
    -1 runs, so all short runs of one sweep are flipped together and the
    sweeps stop once nothing changes. A constant array is left as is, also
    when it is shorter than min_length; a mixed array shorter than
    min_length therefore ends up all -1.
    """
    if min_length < 0:
        raise ValueError(f"min_length must not be negative, got {min_length}")
    n = len(directions)
    if n == 0:
        return
    _check_directions(directions)

    changed = True
    while changed:
        changed = False
        for start, length, sign in _cyclic_runs(directions):
            if sign == 1 and length < min_length and length < n:
                for m in range(length):
                    directions[(start + m) % n] = -1
                changed = True


def count_sign_changes(directions: Sequence[int]) -> int:
    """Number of cyclic sign changes, i.e. inflection points along the contour."""
    d = np.asarray(directions)
    if d.size == 0:
        return 0
    return int(np.count_nonzero(d != np.roll(d, 1)))


def count_protrusions(directions: Sequence[int]) -> int:
    return count_sign_changes(directions) // 2


def equator_lengths(points, directions: Sequence[int]) -> Tuple[float, float]:
    """
    Mean equator length of protrusions and of indentations.

    The equator of a segment is the straight line between the inflection
    points at its start and at the start of the following segment.
    Returns (0.0, 0.0) for a contour without sign changes.
    """
    runs = _cyclic_runs(directions)
    if len(runs) < 2:
        return 0.0, 0.0
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    inflections = pts[[start for start, _, _ in runs]]
    signs = np.array([sign for _, _, sign in runs])
    lengths = np.hypot(*(np.roll(inflections, -1, axis=0) - inflections).T)
    return float(lengths[signs > 0].mean()), float(lengths[signs < 0].mean())


# ---------- Curvatures ----------

def _angle_diff_pm180(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return (a - b + 180.0) % 360.0 - 180.0


def calc_curvatures(points, k: int = 3) -> np.ndarray:
    """
    Pixel-wise curvature of a closed contour (modified Freeman-Davis).

    points: (N,2) array of (x,y) contour pixels in traversal order.
    Returns N curvature values in degrees; positive means turning in the
    traversal direction.
    """
    if k < K_MIN:
        raise ValueError(f"k ({k}) is smaller than {K_MIN}")
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    n = pts.shape[0]
    if n == 0:
        return np.zeros(0, dtype=np.float64)

    # chord from pixel i-k to pixel i
    chord = pts - np.roll(pts, k, axis=0)
    thetas = np.degrees(np.arctan2(chord[:, 1], chord[:, 0])) % 360.0
    deltas = _angle_diff_pm180(np.roll(thetas, -1), np.roll(thetas, 1))

    # average delta_i .. delta_i+k
    acc = np.zeros(n, dtype=np.float64)
    for j in range(k + 1):
        acc += np.roll(deltas, -j)
    return acc / (k + 1.0)


def smooth_curvatures(values, sigma: float) -> np.ndarray:
    """Cyclic Gaussian smoothing of a curvature array."""
    vals = np.asarray(values, dtype=np.float64)
    if sigma <= 0 or vals.size == 0:
        return vals.copy()
    ksize = 2 * int(math.ceil(3.0 * sigma)) + 1
    kernel = cv2.getGaussianKernel(ksize, sigma).ravel()
    half = ksize // 2
    padded = np.take(vals, np.arange(-half, vals.size + half), mode="wrap")
    return np.convolve(padded, kernel, mode="valid")


def curvature_to_directions(curvatures, min_curvature: float = 1.0) -> np.ndarray:
    """
    Map curvatures to directions: 1 above min_curvature, -1 below -min_curvature.

    Undecided pixels take the direction of the cyclically nearest decided
    pixel; on equal distance the neighbour with the larger absolute
    curvature wins (the right one if both are equal). Without any decided
    pixel the whole contour counts as convex.
    """
    curv = np.asarray(curvatures, dtype=np.float64)
    n = curv.size
    dirs = np.zeros(n, dtype=np.int32)
    dirs[curv > min_curvature] = 1
    dirs[curv < -min_curvature] = -1

    decided = np.flatnonzero(dirs)
    if decided.size == 0:
        return np.ones(n, dtype=np.int32)
    undecided = np.flatnonzero(dirs == 0)
    if undecided.size == 0:
        return dirs

    pos = np.searchsorted(decided, undecided)
    right = decided[pos % decided.size]
    left = decided[pos - 1]
    dist_right = (right - undecided) % n
    dist_left = (undecided - left) % n

    take_left = (dist_left < dist_right) | (
        (dist_left == dist_right) & (np.abs(curv[left]) > np.abs(curv[right])))
    fixed = dirs.copy()
    fixed[undecided] = np.where(take_left, dirs[left], dirs[right])
    return fixed


# ---------- Public API ----------

def contour_directions(
    points,
    min_curvature: float = 1.0,
    sigma: float = 4.0,
    min_protrusion_length: int = 10,
    k: int = 3
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Curvatures and cleaned direction array of one closed contour.
    Curvatures are oriented so that the total turning is positive, i.e.
    convex parts map to +1 independent of the traversal direction.
    Returns (smoothed_curvatures, directions).
    """
    pts = np.asarray(points).reshape(-1, 2)
    if pts.shape[0] < 3:
        return np.zeros(pts.shape[0]), np.ones(pts.shape[0], dtype=np.int32)

    curv = calc_curvatures(pts, k=k)
    if curv.sum() < 0:
        curv = -curv
    curv = smooth_curvatures(curv, sigma)
    dirs = curvature_to_directions(curv, min_curvature)
    remove_short_protrusions(dirs, min_protrusion_length)
    return curv, dirs


def measure_region_morphology(
    labels: np.ndarray,
    image_index: int = 0,
    min_curvature: float = 1.0,
    sigma: float = 4.0,
    min_protrusion_length: int = 10,
    k: int = 3
) -> List[RegionMorphology]:
    """
    Protrusion/indentation analysis for each region of a label image.
    - labels: HxW int labels, 0 = background, >0 = region id
    Returns a list of RegionMorphology (one per label>0), sorted by label.
    """
    if labels is None:
        return []
    if labels.ndim != 2:
        raise ValueError(f"labels must be HxW, got shape {labels.shape}")

    records: List[RegionMorphology] = []
    labs = np.unique(labels)
    labs = labs[labs > 0]
    if labs.size == 0:
        return records

    # pre-alloc a uint8 scratch for contours
    scratch = np.zeros(labels.shape, dtype=np.uint8)

    for lbl in labs:
        np.equal(labels, lbl, out=scratch)
        cnts, _ = cv2.findContours(scratch, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_NONE)
        if not cnts:
            continue
        contour = max(cnts, key=len).reshape(-1, 2)
        n = int(contour.shape[0])

        curv, dirs = contour_directions(
            contour,
            min_curvature=min_curvature,
            sigma=sigma,
            min_protrusion_length=min_protrusion_length,
            k=k,
        )
        changes = count_sign_changes(dirs)
        roughness = float(np.mean(np.abs(curv)) - 360.0 / n) if n > 0 else float("nan")
        prot_eq, ind_eq = equator_lengths(contour, dirs)

        records.append(RegionMorphology(
            image_index=image_index,
            label=int(lbl),
            contour_length=n,
            margin_roughness=roughness,
            sign_changes=changes,
            protrusion_count=changes // 2,
            indentation_count=changes // 2,
            protrusion_fraction=float(np.count_nonzero(dirs > 0)) / n if n > 0 else 0.0,
            avg_protrusion_equator=prot_eq,
            avg_indentation_equator=ind_eq,
        ))

    return records


def measure_dataset(
    labels_list: List[Optional[np.ndarray]],
    **params
) -> List[RegionMorphology]:
    """
    Measure a whole set of label images (some may be None).
    Keyword parameters are passed on to measure_region_morphology.
    """
    out: List[RegionMorphology] = []
    for i, L in enumerate(labels_list):
        if L is None:
            continue
        out.extend(measure_region_morphology(L, image_index=i, **params))
    return out
