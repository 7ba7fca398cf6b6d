# mitobo/core/processing.py
# Hysteresis thresholding and label-grid helpers - pure callables with no GUI dependencies
# Safe for headless testing, multiprocessing, and parallelism

from __future__ import annotations
import logging
import cv2
import numpy as np
from scipy import ndimage
from typing import Dict, Tuple, Optional, List

from .morphology import RegionMorphology, measure_region_morphology

logger = logging.getLogger(__name__)

FOREGROUND = 255

# --------------------- Defaults (edit freely) ---------------------
DEFAULTS: Dict[str, Dict[str, float | int | bool | None]] = {
    "hysteresis": {
        "lowT": 70.0,
        "highT": 150.0,
        "foreground": FOREGROUND,
        "connectivity": None,      # None = full (8 in 2D, 26 in 3D); 4 allowed in 2D
        "minAreaPx": 0,            # 0 disables speck removal
    },
    "morphology": {
        "enabled": True,
        "minCurvature": 1.0,       # |curvature| below this is undecided
        "gaussianSigma": 4.0,      # 0 disables smoothing
        "minProtrusionLength": 10, # shorter protrusions are removed
        "k": 3,                    # chord length of the curvature estimator
    },
    "batch": {
        "maxWorkers": None,        # None = min(cpu_count, n_images)
    },
}
# ------------------------------------------------------------------

# --------------------- Internal helpers ---------------------------

def _prepGrid(src) -> np.ndarray:
    """Return the input as a 2D (H,W) or 3D (Z,H,W) sample grid."""
    img = np.asarray(src)
    if img.dtype == np.bool_:
        img = img.astype(np.uint8)
    if img.ndim not in (2, 3):
        raise ValueError(f"Expected a 2D or 3D grid, got shape {img.shape}")
    return img


def _fullStructure(ndim: int, connectivity: Optional[int]) -> np.ndarray:
    if connectivity is None:
        return ndimage.generate_binary_structure(ndim, ndim)
    if ndim == 2 and connectivity == 4:
        return ndimage.generate_binary_structure(2, 1)
    if ndim == 2 and connectivity == 8:
        return ndimage.generate_binary_structure(2, 2)
    if ndim == 3 and connectivity == 6:
        return ndimage.generate_binary_structure(3, 1)
    if ndim == 3 and connectivity == 26:
        return ndimage.generate_binary_structure(3, 3)
    raise ValueError(f"Unsupported connectivity {connectivity} for {ndim}D grids")


def _labelMask(mask: np.ndarray, connectivity: Optional[int]) -> Tuple[int, np.ndarray]:
    """Connected components of a boolean mask. Returns (num_incl_background, labels)."""
    if mask.ndim == 2 and connectivity in (None, 4, 8):
        num, labels = cv2.connectedComponents(
            mask.astype(np.uint8), connectivity=8 if connectivity is None else connectivity)
        return int(num), labels.astype(np.int32, copy=False)
    labels, num = ndimage.label(mask, structure=_fullStructure(mask.ndim, connectivity))
    return int(num) + 1, labels.astype(np.int32, copy=False)


def _relabelLut(keep: np.ndarray) -> np.ndarray:
    """old label -> new sequential label (or 0 if dropped)."""
    lut = np.zeros(keep.shape[0], dtype=np.int32)
    ids = np.flatnonzero(keep)
    lut[ids] = np.arange(1, ids.size + 1, dtype=np.int32)
    return lut


# --------------------- Thresholding -------------------------------

def hysteresisThreshold(
    image,
    lowT: float,
    highT: float,
    foreground: int = FOREGROUND,
    labelComponents: bool = False,
    connectivity: Optional[int] = None,
) -> np.ndarray:
    """
    Two-threshold segmentation of a 2D or 3D grid.

    Samples >= highT are seeds. A sample >= lowT is foreground if it is
    transitively connected to a seed (8-neighbourhood in 2D, 26 in 3D unless
    `connectivity` says otherwise). Everything else is background.

    Returns uint8 {0, foreground}, or int32 component ids 1..N when
    labelComponents=True (numbered in raster order).
    """
    lowT = float(lowT); highT = float(highT)
    if lowT > highT:
        raise ValueError(f"Lower threshold {lowT} exceeds upper threshold {highT}")
    if not 0 < int(foreground) <= 255:
        raise ValueError(f"Foreground value must be in 1..255, got {foreground}")

    img = _prepGrid(image)
    outType = np.int32 if labelComponents else np.uint8
    if img.size == 0:
        return np.zeros(img.shape, dtype=outType)

    lowMask = img >= lowT
    seeds = img >= highT
    if not seeds.any():
        return np.zeros(img.shape, dtype=outType)

    num, labels = _labelMask(lowMask, connectivity)
    keep = np.zeros(num, dtype=bool)
    keep[np.unique(labels[seeds])] = True
    keep[0] = False

    if labelComponents:
        return _relabelLut(keep)[labels]
    return (keep[labels].astype(np.uint8) * np.uint8(foreground)).astype(np.uint8)


# -------------------------- Cleanup -------------------------------

def removeSmallAreas(binary: np.ndarray, minArea: int, connectivity: Optional[int] = None) -> np.ndarray:
    """Remove connected components smaller than minArea. Keeps FG=255.

    Vectorized: component areas via bincount, then a LUT-based remap.
    """
    if minArea <= 1 or binary.size == 0:
        return binary
    num, labels = _labelMask(binary > 0, connectivity)
    if num <= 1:
        return binary
    areas = np.bincount(labels.ravel(), minlength=num)
    keep_lut = (areas >= minArea).astype(np.uint8)
    keep_lut[0] = 0
    return (keep_lut[labels] * FOREGROUND).astype(np.uint8)


def labelConnected(binary: np.ndarray, connectivity: Optional[int] = None) -> np.ndarray:
    """int32 component labels of a binary grid, 0=background, 1..N in raster order."""
    if binary.size == 0:
        return np.zeros(binary.shape, dtype=np.int32)
    _, labels = _labelMask(binary > 0, connectivity)
    return labels


def mask_from_labels(labels: np.ndarray) -> np.ndarray:
    """
    Utility: binary mask (uint8 0/255) from labels (0=background).
    """
    return (labels.astype(np.int32, copy=False) > 0).astype(np.uint8) * FOREGROUND


# -------------------------- Pipeline ------------------------------

def runHysteresisPipeline(
    image: np.ndarray,
    hystParams: Optional[Dict[str, float | int | bool | None]] = None,
    morphParams: Optional[Dict[str, float | int | bool | None]] = None
) -> Tuple[np.ndarray, np.ndarray, Dict, Optional[List[RegionMorphology]]]:
    """
    Performs hysteresis threshold -> (optional speck cleanup) -> labelling
    -> (optional) per-region protrusion analysis.
    Returns (binary_uint8, labels_int32, meta, morphology_or_None).
    Morphology is only computed for 2D grids.
    """
    hp = dict(DEFAULTS["hysteresis"]); hp.update(hystParams or {})
    mp = dict(DEFAULTS["morphology"]); mp.update(morphParams or {})

    conn = hp.get("connectivity")
    fg = int(hp.get("foreground", FOREGROUND))
    binary = hysteresisThreshold(
        image,
        lowT=float(hp["lowT"]),
        highT=float(hp["highT"]),
        foreground=fg,
        connectivity=None if conn is None else int(conn),
    )
    minArea = int(hp.get("minAreaPx") or 0)
    if minArea > 1:
        binary = removeSmallAreas(binary, minArea=minArea, connectivity=conn)
    labels = labelConnected(binary, connectivity=conn)

    meta = {
        "lowT": float(hp["lowT"]),
        "highT": float(hp["highT"]),
        "numComponents": int(labels.max()) if labels.size else 0,
    }

    morphology = None
    if bool(mp.get("enabled", True)) and labels.ndim == 2:
        morphology = measure_region_morphology(
            labels,
            min_curvature=float(mp["minCurvature"]),
            sigma=float(mp["gaussianSigma"]),
            min_protrusion_length=int(mp["minProtrusionLength"]),
            k=int(mp["k"]),
        )
    logger.debug("hysteresis pipeline: %d components", meta["numComponents"])

    if fg != FOREGROUND:
        # cleanup above always writes FOREGROUND
        binary = (binary > 0).astype(np.uint8) * np.uint8(fg)
    return binary, labels, meta, morphology
