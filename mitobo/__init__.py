# mitobo/__init__.py
# pymitobo package root
"""
pymitobo - Microscope image analysis building blocks

Subpackages:
    core - Pure algorithms (hysteresis thresholding, contour protrusions,
           data association for multi-target tracking)

Quick start:
    from mitobo.core import hysteresisThreshold, remove_short_protrusions
    from mitobo.core import DataAssociationGeneral, WeightedAdjacencyMatrix
"""

# Re-export commonly used items from core for convenience
from .core import (
    # Tracking
    CLUTTER,
    # Processing
    DEFAULTS,
    NO_TARGETS,
    AdjacencyMatrix,
    DataAssociation,
    DataAssociationExclusive,
    DataAssociationGeneral,
    ObservationAdjacency,
    PartitGraphNodeID,
    # Morphology
    RegionMorphology,
    WeightedAdjacencyMatrix,
    count_protrusions,
    hysteresisThreshold,
    labelConnected,
    measure_batch,
    measure_region_morphology,
    # Batch
    process_batch_parallel,
    process_batch_sequential,
    remove_short_protrusions,
    runHysteresisPipeline,
    threshold_batch,
)

__all__ = [
    # Processing
    "DEFAULTS",
    "hysteresisThreshold",
    "labelConnected",
    "runHysteresisPipeline",
    # Morphology
    "RegionMorphology",
    "remove_short_protrusions",
    "count_protrusions",
    "measure_region_morphology",
    # Tracking
    "CLUTTER",
    "NO_TARGETS",
    "AdjacencyMatrix",
    "WeightedAdjacencyMatrix",
    "DataAssociation",
    "DataAssociationGeneral",
    "DataAssociationExclusive",
    "PartitGraphNodeID",
    "ObservationAdjacency",
    # Batch
    "process_batch_parallel",
    "process_batch_sequential",
    "threshold_batch",
    "measure_batch",
]
