# mitobo/core/tracking.py
# Data association and adjacency matrices for multi-target tracking
# Pure data structures with no GUI dependencies - safe for headless testing and parallelism

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, Iterator, Optional, Sequence, Set, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Index 0 means clutter on the observation axis and "not detected" on the target axis
CLUTTER = 0
# Returned by the association getters when nothing is associated
NO_TARGETS: Tuple[int, ...] = ()


def _checkIndex(kind: str, idx) -> int:
    if isinstance(idx, bool) or int(idx) != idx or idx < 0:
        raise ValueError(f"Invalid {kind} index: {idx!r}")
    return int(idx)


# ---------- Adjacency matrices ----------

class AdjacencyMatrix(ABC):
    """
    Weighted (possibly directed) graph over a fixed, ordered node set.

    Node types must be hashable and mutually comparable; get_nodes()
    returns them in ascending order. A weight of NO_EDGE means the two
    nodes are not connected.
    """

    NO_EDGE = 0.0

    @abstractmethod
    def num_of_nodes(self) -> int: ...

    @abstractmethod
    def get_nodes(self) -> Tuple[Hashable, ...]: ...

    @abstractmethod
    def is_directed(self) -> bool: ...

    @abstractmethod
    def get_weight(self, a, b) -> float: ...

    @abstractmethod
    def set_weight(self, a, b, weight: float) -> None: ...

    def has_edge(self, a, b) -> bool:
        return self.get_weight(a, b) != self.NO_EDGE

    def edges(self) -> Iterator[Tuple[Hashable, Hashable, float]]:
        """Yields (a, b, weight) for every edge; undirected edges once with a <= b."""
        nodes = self.get_nodes()
        for i, a in enumerate(nodes):
            for b in (nodes if self.is_directed() else nodes[i:]):
                w = self.get_weight(a, b)
                if w != self.NO_EDGE:
                    yield a, b, w


class WeightedAdjacencyMatrix(AdjacencyMatrix):
    """Dense adjacency matrix; undirected writes are mirrored."""

    def __init__(self, nodes: Iterable, directed: bool = False):
        ordered = tuple(sorted(nodes))
        if len(set(ordered)) != len(ordered):
            raise ValueError("Adjacency matrix nodes must be unique")
        self._nodes = ordered
        self._index: Dict[Hashable, int] = {n: i for i, n in enumerate(ordered)}
        self._directed = bool(directed)
        self._weights = np.full((len(ordered), len(ordered)), self.NO_EDGE, dtype=np.float64)

    def _idx(self, node) -> int:
        try:
            return self._index[node]
        except (KeyError, TypeError):
            raise ValueError(f"Unknown node: {node!r}") from None

    def num_of_nodes(self) -> int:
        return len(self._nodes)

    def get_nodes(self) -> Tuple[Hashable, ...]:
        return self._nodes

    def is_directed(self) -> bool:
        return self._directed

    def get_weight(self, a, b) -> float:
        return float(self._weights[self._idx(a), self._idx(b)])

    def set_weight(self, a, b, weight: float) -> None:
        i, j = self._idx(a), self._idx(b)
        self._weights[i, j] = float(weight)
        if not self._directed:
            self._weights[j, i] = float(weight)

    def neighbors(self, node) -> Tuple[Hashable, ...]:
        """Nodes reachable from node over a single edge, in node order."""
        row = self._weights[self._idx(node)]
        return tuple(self._nodes[j] for j in np.flatnonzero(row != self.NO_EDGE))

    def to_array(self) -> np.ndarray:
        return self._weights.copy()

    def __repr__(self) -> str:
        kind = "directed" if self._directed else "undirected"
        return f"{type(self).__name__}({len(self._nodes)} nodes, {kind})"


# ---------- Data associations ----------

class DataAssociation(ABC):
    """
    Relation between targets (1..numTargets) and observations (1..numObservations).

    Index 0 is accepted on both axes: observation 0 stands for clutter,
    target 0 for "not detected". Getters return NO_TARGETS when nothing is
    associated.
    """

    @abstractmethod
    def set_association(self, target: int, observation: int) -> None: ...

    @abstractmethod
    def unset_association(self, target: int, observation: int) -> None: ...

    @abstractmethod
    def are_associated(self, target: int, observation: int) -> bool: ...

    @abstractmethod
    def num_of_target_assocs(self, observation: int) -> int: ...

    @abstractmethod
    def num_of_observation_assocs(self, target: int) -> int: ...

    @abstractmethod
    def get_associated_targets(self, observation: int) -> Tuple[int, ...]: ...

    @abstractmethod
    def get_associated_observations(self, target: int) -> Tuple[int, ...]: ...

    @abstractmethod
    def pairs(self) -> Iterator[Tuple[int, int]]:
        """All associated (target, observation) pairs."""

    @abstractmethod
    def copy(self) -> "DataAssociation": ...

    def max_associated_target_id(self) -> int:
        """Largest target index in any association, CLUTTER (0) if there is none."""
        return max((t for t, _ in self.pairs()), default=CLUTTER)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DataAssociation):
            return NotImplemented
        return type(self) is type(other) and set(self.pairs()) == set(other.pairs())

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        links = " ".join(f"{o}->{t}" for t, o in sorted(self.pairs(), key=lambda p: (p[1], p[0])))
        return f"{type(self).__name__}(Obs->Target: {links})"


class DataAssociationGeneral(DataAssociation):
    """Many-to-many association backed by two index maps."""

    def __init__(self, assignments: Optional[Iterable[Tuple[int, int]]] = None):
        self._obsByTarget: Dict[int, Set[int]] = {}
        self._targetsByObs: Dict[int, Set[int]] = {}
        for target, observation in (assignments or ()):
            self.set_association(target, observation)

    def set_association(self, target: int, observation: int) -> None:
        t = _checkIndex("target", target)
        o = _checkIndex("observation", observation)
        self._obsByTarget.setdefault(t, set()).add(o)
        self._targetsByObs.setdefault(o, set()).add(t)

    def unset_association(self, target: int, observation: int) -> None:
        t = _checkIndex("target", target)
        o = _checkIndex("observation", observation)
        obs = self._obsByTarget.get(t)
        if obs is None or o not in obs:
            return
        obs.discard(o)
        if not obs:
            del self._obsByTarget[t]
        targets = self._targetsByObs[o]
        targets.discard(t)
        if not targets:
            del self._targetsByObs[o]

    def are_associated(self, target: int, observation: int) -> bool:
        t = _checkIndex("target", target)
        o = _checkIndex("observation", observation)
        return o in self._obsByTarget.get(t, ())

    def num_of_target_assocs(self, observation: int) -> int:
        return len(self._targetsByObs.get(_checkIndex("observation", observation), ()))

    def num_of_observation_assocs(self, target: int) -> int:
        return len(self._obsByTarget.get(_checkIndex("target", target), ()))

    def get_associated_targets(self, observation: int) -> Tuple[int, ...]:
        targets = self._targetsByObs.get(_checkIndex("observation", observation))
        return tuple(sorted(targets)) if targets else NO_TARGETS

    def get_associated_observations(self, target: int) -> Tuple[int, ...]:
        obs = self._obsByTarget.get(_checkIndex("target", target))
        return tuple(sorted(obs)) if obs else NO_TARGETS

    def pairs(self) -> Iterator[Tuple[int, int]]:
        for t, obs in self._obsByTarget.items():
            for o in obs:
                yield t, o

    def max_associated_target_id(self) -> int:
        return max(self._obsByTarget, default=CLUTTER)

    def copy(self) -> "DataAssociationGeneral":
        return DataAssociationGeneral(self.pairs())


class DataAssociationExclusive(DataAssociation):
    """
    A target generates at most one observation and an observation stems from
    at most one target. Observations without an entry are clutter.
    """

    def __init__(self, assignments: Optional[Iterable[Tuple[int, int]]] = None):
        self._targetByObs: Dict[int, int] = {}
        self._obsByTarget: Dict[int, int] = {}
        for target, observation in (assignments or ()):
            self.set_association(target, observation)

    def set_association(self, target: int, observation: int) -> None:
        t = _checkIndex("target", target)
        o = _checkIndex("observation", observation)
        current = self._targetByObs.get(o)
        if current == t:
            return
        if current is not None:
            raise ValueError(
                f"Cannot associate target {t} and observation {o}. "
                f"Observation is already associated to target {current}.")
        if t in self._obsByTarget:
            raise ValueError(
                f"Cannot associate target {t} and observation {o}. "
                f"Target was associated to observation {self._obsByTarget[t]} before.")
        self._targetByObs[o] = t
        self._obsByTarget[t] = o

    def unset_association(self, target: int, observation: int) -> None:
        t = _checkIndex("target", target)
        o = _checkIndex("observation", observation)
        if self._targetByObs.get(o) != t:
            logger.warning("Cannot unset association: target %d and observation %d "
                           "are not associated.", t, o)
            return
        del self._targetByObs[o]
        del self._obsByTarget[t]

    def are_associated(self, target: int, observation: int) -> bool:
        t = _checkIndex("target", target)
        return self._targetByObs.get(_checkIndex("observation", observation)) == t

    def num_of_target_assocs(self, observation: int) -> int:
        return int(_checkIndex("observation", observation) in self._targetByObs)

    def num_of_observation_assocs(self, target: int) -> int:
        return int(_checkIndex("target", target) in self._obsByTarget)

    def get_associated_targets(self, observation: int) -> Tuple[int, ...]:
        t = self._targetByObs.get(_checkIndex("observation", observation))
        return NO_TARGETS if t is None else (t,)

    def get_associated_observations(self, target: int) -> Tuple[int, ...]:
        o = self._obsByTarget.get(_checkIndex("target", target))
        return NO_TARGETS if o is None else (o,)

    def pairs(self) -> Iterator[Tuple[int, int]]:
        for o, t in self._targetByObs.items():
            yield t, o

    def max_associated_target_id(self) -> int:
        return max(self._obsByTarget, default=CLUTTER)

    def copy(self) -> "DataAssociationExclusive":
        return DataAssociationExclusive(self.pairs())


# ---------- Observation adjacency over a time series ----------

@dataclass(frozen=True, order=True)
class PartitGraphNodeID:
    """Observation node_id (0-based) of time frame partition_id."""
    partition_id: int
    node_id: int


class ObservationAdjacency(WeightedAdjacencyMatrix):
    """
    Undirected adjacency matrix over all observations of a time series.

    The observations of one frame form a partition; edges only connect
    different partitions. Edge weights count how many sampled data
    associations link two observations as successive detections of the
    same target. Per observation, target and clutter votes are counted too.
    """

    def __init__(
        self,
        num_observations: Sequence[int],
        associations: Iterable[Sequence[DataAssociation]] = ()
    ):
        counts = [int(c) for c in num_observations]
        if any(c < 0 for c in counts):
            raise ValueError(f"Observation counts must not be negative: {counts}")
        self._numObservations = counts

        nodes = [PartitGraphNodeID(t, m) for t, c in enumerate(counts) for m in range(c)]
        super().__init__(nodes, directed=False)

        self._votesClutter = np.zeros(len(nodes), dtype=np.int64)
        self._votesTarget = np.zeros(len(nodes), dtype=np.int64)

        numSamples = 0
        for sample in associations:
            self._addSample(sample)
            numSamples += 1
        logger.debug("observation adjacency: %d nodes, %d samples",
                     len(nodes), numSamples)

    def _addSample(self, sample: Sequence[DataAssociation]) -> None:
        if len(sample) != len(self._numObservations):
            raise ValueError(f"Sample covers {len(sample)} frames, "
                             f"expected {len(self._numObservations)}")

        # most recent node per target id
        lastSeen: Dict[int, PartitGraphNodeID] = {}
        for t, assoc in enumerate(sample):
            current: Dict[int, PartitGraphNodeID] = {}
            for m in range(self._numObservations[t]):
                node = PartitGraphNodeID(t, m)
                targets = assoc.get_associated_targets(m + 1)
                # clutter unless some target other than 0 claims the observation
                targetID = next((tid for tid in targets if tid > CLUTTER), CLUTTER)
                if targetID > 0:
                    self._votesTarget[self._idx(node)] += 1
                    prev = lastSeen.get(targetID)
                    if prev is not None:
                        self.set_weight(prev, node, self.get_weight(prev, node) + 1.0)
                    current.setdefault(targetID, node)
                else:
                    self._votesClutter[self._idx(node)] += 1
            lastSeen.update(current)

    def set_weight(self, a, b, weight: float) -> None:
        if (isinstance(a, PartitGraphNodeID) and isinstance(b, PartitGraphNodeID)
                and a.partition_id == b.partition_id and weight != self.NO_EDGE):
            raise ValueError(f"Observations of frame {a.partition_id} cannot be adjacent")
        super().set_weight(a, b, weight)

    def num_of_partitions(self) -> int:
        return len(self._numObservations)

    def num_of_observations(self, t: int) -> int:
        return self._numObservations[t]

    def get_votes_clutter(self, t: int, m: int) -> int:
        return int(self._votesClutter[self._idx(PartitGraphNodeID(t, m))])

    def get_votes_target(self, t: int, m: int) -> int:
        return int(self._votesTarget[self._idx(PartitGraphNodeID(t, m))])

    def set_votes_clutter(self, t: int, m: int, value: int) -> None:
        self._votesClutter[self._idx(PartitGraphNodeID(t, m))] = int(value)

    def set_votes_target(self, t: int, m: int, value: int) -> None:
        self._votesTarget[self._idx(PartitGraphNodeID(t, m))] = int(value)

    def get_votes_adjacency(self, t1: int, m1: int, t2: int, m2: int) -> float:
        return self.get_weight(PartitGraphNodeID(t1, m1), PartitGraphNodeID(t2, m2))
