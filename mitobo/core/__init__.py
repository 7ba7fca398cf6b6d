# mitobo/core/__init__.py
# Core algorithms package - pure callables with no GUI dependencies
# Safe for headless testing, multiprocessing, and parallelism

from .batch import (
    measure_batch,
    process_batch_parallel,
    process_batch_sequential,
    threshold_batch,
)
from .morphology import (
    RegionMorphology,
    calc_curvatures,
    contour_directions,
    count_protrusions,
    count_sign_changes,
    curvature_to_directions,
    equator_lengths,
    measure_dataset,
    measure_region_morphology,
    remove_short_protrusions,
    smooth_curvatures,
)
from .processing import (
    DEFAULTS,
    FOREGROUND,
    hysteresisThreshold,
    labelConnected,
    mask_from_labels,
    removeSmallAreas,
    runHysteresisPipeline,
)
from .tracking import (
    CLUTTER,
    NO_TARGETS,
    AdjacencyMatrix,
    DataAssociation,
    DataAssociationExclusive,
    DataAssociationGeneral,
    ObservationAdjacency,
    PartitGraphNodeID,
    WeightedAdjacencyMatrix,
)

__all__ = [
    # processing
    "DEFAULTS",
    "FOREGROUND",
    "hysteresisThreshold",
    "removeSmallAreas",
    "labelConnected",
    "mask_from_labels",
    "runHysteresisPipeline",
    # morphology
    "RegionMorphology",
    "remove_short_protrusions",
    "equator_lengths",
    "count_sign_changes",
    "count_protrusions",
    "calc_curvatures",
    "smooth_curvatures",
    "curvature_to_directions",
    "contour_directions",
    "measure_region_morphology",
    "measure_dataset",
    # tracking
    "CLUTTER",
    "NO_TARGETS",
    "AdjacencyMatrix",
    "WeightedAdjacencyMatrix",
    "DataAssociation",
    "DataAssociationGeneral",
    "DataAssociationExclusive",
    "PartitGraphNodeID",
    "ObservationAdjacency",
    # batch parallel
    "process_batch_parallel",
    "process_batch_sequential",
    "threshold_batch",
    "measure_batch",
]
