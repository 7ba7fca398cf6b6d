# mitobo/core/batch.py
# Batch execution of the hysteresis/morphology pipeline over many grids
# Workers are module-level so ProcessPoolExecutor can pickle them

from __future__ import annotations

import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .morphology import RegionMorphology, measure_dataset
from .processing import DEFAULTS, runHysteresisPipeline

logger = logging.getLogger(__name__)

SampleGrid = np.ndarray    # (H,W) or (Z,H,W), any numeric dtype
BinaryMask = np.ndarray    # uint8 {0, 255}
LabelMap = np.ndarray      # int32, 0 = background
Morphology = Optional[List[RegionMorphology]]
ProgressCallback = Callable[[int, int], None]  # (done, total)
Job = Tuple[SampleGrid, Dict[str, Any], Dict[str, Any], int]
JobResult = Tuple[int, BinaryMask, LabelMap, Dict[str, Any], Morphology]

# inline execution below this many grids
_MIN_PARALLEL_JOBS = 3


# ---------- Workers ----------

def _process_single_image(
    img: SampleGrid,
    hyst_params: Dict[str, Any],
    morph_params: Dict[str, Any],
    image_index: int = 0
) -> JobResult:
    """Run the pipeline on one grid and tag every result with image_index."""
    binary, labels, meta, morphology = runHysteresisPipeline(img, hyst_params, morph_params)
    for rec in morphology or ():
        rec.image_index = image_index
    meta["imageIndex"] = image_index
    return image_index, binary, labels, meta, morphology


def _run_job(job: Job) -> JobResult:
    return _process_single_image(*job)


# ---------- Scheduling ----------

def _resolve_workers(max_workers: Optional[int], n_jobs: int) -> int:
    if max_workers is None:
        max_workers = DEFAULTS["batch"]["maxWorkers"]
    if max_workers is None:
        max_workers = os.cpu_count() or 4
    return max(1, min(int(max_workers), n_jobs))


def _iter_results(jobs: Sequence[Job], workers: int) -> Iterator[JobResult]:
    """Yields job results in completion order; the first failure cancels the rest."""
    if workers <= 1 or len(jobs) < _MIN_PARALLEL_JOBS:
        for job in jobs:
            yield _run_job(job)
        return

    logger.debug("processing %d grids with %d workers", len(jobs), workers)
    with ProcessPoolExecutor(max_workers=workers) as pool:
        pending = {pool.submit(_run_job, job): job[3] for job in jobs}
        for future in as_completed(pending):
            try:
                result = future.result()
            except Exception:
                logger.error("batch job for grid %d failed", pending[future])
                for other in pending:
                    other.cancel()
                raise
            yield result


# ---------- Public API ----------

def process_batch_parallel(
    images: Sequence[SampleGrid],
    hyst_params: Optional[Dict[str, Any]] = None,
    morph_params: Optional[Dict[str, Any]] = None,
    max_workers: Optional[int] = None,
    progress_callback: Optional[ProgressCallback] = None
) -> Tuple[List[BinaryMask], List[LabelMap], List[Morphology]]:
    """
    Run runHysteresisPipeline on every grid, in worker processes when
    there are enough of them.

    hyst_params / morph_params override DEFAULTS["hysteresis"] and
    DEFAULTS["morphology"]. max_workers falls back to
    DEFAULTS["batch"]["maxWorkers"], then to the CPU count.
    progress_callback(done, total) is called once per finished grid.

    Returns (binaries, labels_list, morph_list) in input order. The first
    worker exception is re-raised after the remaining jobs are cancelled.
    """
    n = len(images)
    binaries: List[Optional[BinaryMask]] = [None] * n
    labels_list: List[Optional[LabelMap]] = [None] * n
    morph_list: List[Morphology] = [None] * n
    if n == 0:
        return [], [], []

    hyst = dict(hyst_params or {})
    morph = dict(morph_params or {})
    jobs = [(img, hyst, morph, i) for i, img in enumerate(images)]

    done = 0
    for idx, binary, labels, _meta, morphology in _iter_results(jobs, _resolve_workers(max_workers, n)):
        binaries[idx] = binary
        labels_list[idx] = labels
        morph_list[idx] = morphology
        done += 1
        if progress_callback:
            progress_callback(done, n)

    return binaries, labels_list, morph_list  # type: ignore


def process_batch_sequential(
    images: Sequence[SampleGrid],
    hyst_params: Optional[Dict[str, Any]] = None,
    morph_params: Optional[Dict[str, Any]] = None,
    progress_callback: Optional[ProgressCallback] = None
) -> Tuple[List[BinaryMask], List[LabelMap], List[Morphology]]:
    """process_batch_parallel without worker processes."""
    return process_batch_parallel(images, hyst_params, morph_params,
                                  max_workers=1, progress_callback=progress_callback)


# ---------- Convenience wrappers ----------

def threshold_batch(images: Sequence[SampleGrid], lowT: float, highT: float, **kwargs: Any) -> List[BinaryMask]:
    """Hysteresis masks only; extra keywords go into the hysteresis parameters."""
    binaries, _, _ = process_batch_parallel(
        images, {"lowT": lowT, "highT": highT, **kwargs}, {"enabled": False})
    return binaries


def measure_batch(labels_list: Sequence[Optional[LabelMap]], **params: Any) -> List[RegionMorphology]:
    """Flat list of RegionMorphology over all label maps (None entries skipped)."""
    return measure_dataset(list(labels_list), **params)
