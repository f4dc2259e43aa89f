"""
Agglomerative hierarchical clustering.

This module provides the cluster state (current clusters plus their
pairwise distances), the distance-update strategies applied after each
merge, the engine that repeatedly merges the closest pair, and the
resulting agglomeration schedule.

The engine works on anything that has a size and a pairwise distance:
raw cases with a precomputed proximity matrix (Lance-Williams updates) or
CF-tree sub-clusters whose distances are recomputed exactly after every
merge.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from clustermath.errors import ConfigurationError, ScheduleError
from clustermath.math.distance import ProximityMatrix
from clustermath.math.options import LinkageMethod

logger = logging.getLogger(__name__)


class ClusterState:
    """
    Current clusters and their pairwise distance matrix.

    Smaller distances mean closer clusters. The state is owned by a single
    agglomeration run and is only mutated through merge().
    """

    def __init__(self,
                 distances: np.ndarray,
                 clusters: Optional[List[List[int]]] = None,
                 items: Optional[List[Any]] = None):
        """
        Initialize a cluster state.

        Args:
            distances: Symmetric m x m matrix between the initial clusters
            clusters: Case indices owned by each initial cluster; defaults
                to one singleton per row
            items: Optional payload per cluster (e.g. CF entries) used by
                update strategies that recompute distances
        """
        matrix = np.array(distances, dtype=float, copy=True)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ConfigurationError("distance matrix must be square")
        np.fill_diagonal(matrix, 0.0)

        m = matrix.shape[0]
        self.distances = matrix
        self.clusters = [list(c) for c in clusters] if clusters is not None else [[i] for i in range(m)]
        # stable ids: the original position of each initial cluster
        self.ids = list(range(m))
        self.items = list(items) if items is not None else None

        if len(self.clusters) != m:
            raise ConfigurationError(
                f"{len(self.clusters)} clusters but a {m} x {m} distance matrix")
        if self.items is not None and len(self.items) != m:
            raise ConfigurationError(f"{len(self.items)} items but {m} clusters")

    @classmethod
    def from_proximity(cls, proximity: ProximityMatrix) -> 'ClusterState':
        """Seed a state with one singleton cluster per case."""
        return cls(proximity.dissimilarities())

    @property
    def size(self) -> int:
        return len(self.clusters)

    def counts(self) -> np.ndarray:
        """Number of cases in each current cluster."""
        return np.array([len(c) for c in self.clusters], dtype=float)

    def merge(self, keep: int, remove: int, row: np.ndarray, item: Any = None) -> None:
        """
        Merge cluster `remove` into cluster `keep`.

        The case sets are unioned into keep's slot, remove's slot is
        dropped (higher positions shift down by one), and keep's row and
        column are replaced by `row`. Every other cell is carried over.

        Args:
            keep: Position of the surviving cluster
            remove: Position of the cluster merged away
            row: Distances from the merged cluster to every pre-merge
                position (entries at keep and remove are ignored)
            item: New payload for the merged cluster, if items are tracked
        """
        if keep == remove:
            raise ValueError("cannot merge a cluster with itself")

        self.clusters[keep] = self.clusters[keep] + self.clusters[remove]
        if self.items is not None:
            self.items[keep] = item

        row = np.asarray(row, dtype=float).copy()
        row[keep] = 0.0
        self.distances[keep, :] = row
        self.distances[:, keep] = row

        self.distances = np.delete(np.delete(self.distances, remove, axis=0), remove, axis=1)
        del self.clusters[remove]
        del self.ids[remove]
        if self.items is not None:
            del self.items[remove]

    def check_invariants(self, atol: float = 1e-9) -> bool:
        """
        True if the matrix matches the cluster count, is symmetric and has
        a zero diagonal.
        """
        m = self.distances.shape[0]
        return (m == len(self.clusters) == len(self.ids)
                and np.allclose(self.distances, self.distances.T, atol=atol, equal_nan=True)
                and np.allclose(np.diag(self.distances), 0.0, atol=atol))

    def __repr__(self) -> str:
        return f"ClusterState(clusters={self.size})"


def lance_williams(method: LinkageMethod,
                   d_ko: np.ndarray,
                   d_ro: np.ndarray,
                   d_kr: float,
                   n_k: float,
                   n_r: float,
                   n_o: np.ndarray) -> np.ndarray:
    """
    Distance from a merged cluster (k + r) to every other cluster o.

    Args:
        method: Linkage method
        d_ko: Pre-merge distances from k to each o
        d_ro: Pre-merge distances from r to each o
        d_kr: Pre-merge distance between k and r
        n_k: Size of k
        n_r: Size of r
        n_o: Size of each o

    Returns:
        Updated distances, aligned with d_ko
    """
    if method is LinkageMethod.SINGLE:
        return np.minimum(d_ko, d_ro)
    if method is LinkageMethod.COMPLETE:
        return np.maximum(d_ko, d_ro)
    if method is LinkageMethod.AVERAGE_BETWEEN:
        return (n_k * d_ko + n_r * d_ro) / (n_k + n_r)
    if method is LinkageMethod.AVERAGE_WITHIN:
        return (d_ko + d_ro) / 2.0
    if method is LinkageMethod.CENTROID:
        n_kr = n_k + n_r
        return (n_k * d_ko + n_r * d_ro - n_k * n_r / n_kr * d_kr) / n_kr
    if method is LinkageMethod.MEDIAN:
        return (d_ko + d_ro) / 2.0 - d_kr / 4.0
    if method is LinkageMethod.WARD:
        return ((n_o + n_k) * d_ko + (n_o + n_r) * d_ro - n_o * d_kr) / (n_k + n_r + n_o)
    raise ValueError(f"Unhandled linkage method: {method}")


class DistanceUpdate:
    """
    Strategy producing the merged cluster's distance row.
    """

    def merged_row(self, state: ClusterState, keep: int, remove: int) -> Tuple[np.ndarray, Any]:
        """
        Args:
            state: Pre-merge state
            keep: Position of the surviving cluster
            remove: Position of the cluster merged away

        Returns:
            (row of distances aligned with pre-merge positions, merged item)
        """
        raise NotImplementedError


class LanceWilliamsUpdate(DistanceUpdate):
    """Update distances from pre-merge distances and cluster sizes."""

    def __init__(self, method: LinkageMethod):
        self.method = LinkageMethod.parse(method)

    def merged_row(self, state, keep, remove):
        counts = state.counts()
        row = lance_williams(
            self.method,
            state.distances[keep, :],
            state.distances[remove, :],
            state.distances[keep, remove],
            counts[keep],
            counts[remove],
            counts
        )
        return row, None


class RecomputeUpdate(DistanceUpdate):
    """
    Combine the two items and measure the result against every other item.

    Items must provide combine(other) returning a new merged item; the
    distance function takes two items.
    """

    def __init__(self, distance_fn: Callable[[Any, Any], float]):
        self.distance_fn = distance_fn

    def merged_row(self, state, keep, remove):
        if state.items is None:
            raise ConfigurationError("recomputing distances needs per-cluster items")
        merged = state.items[keep].combine(state.items[remove])
        row = np.zeros(state.size)
        for o, other in enumerate(state.items):
            if o != keep and o != remove:
                row[o] = self.distance_fn(merged, other)
        return row, merged


@dataclass
class AgglomerationStage:
    """
    One merge.

    Attributes:
        stage: 1-based stage number
        cluster1: Stable id of the surviving cluster
        cluster2: Stable id of the cluster merged away
        coefficient: Reported merge coefficient (for Ward, the running
            cumulative value)
        cluster1_first_appears: Stage that last formed cluster1, 0 for a singleton
        cluster2_first_appears: Stage that last formed cluster2, 0 for a singleton
        next_stage: Next stage that involves the merged cluster, 0 for the last
        distance: Raw proximity between the merged pair
        size: Number of cases in the merged cluster
    """

    stage: int
    cluster1: int
    cluster2: int
    coefficient: float
    cluster1_first_appears: int = 0
    cluster2_first_appears: int = 0
    next_stage: int = 0
    distance: float = 0.0
    size: int = 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage': self.stage,
            'cluster1': self.cluster1,
            'cluster2': self.cluster2,
            'coefficient': self.coefficient,
            'cluster1_first_appears': self.cluster1_first_appears,
            'cluster2_first_appears': self.cluster2_first_appears,
            'next_stage': self.next_stage,
            'distance': self.distance,
            'size': self.size
        }


@dataclass
class AgglomerationSchedule:
    """
    Ordered, append-only record of the n - 1 merges of a run.
    """

    n_items: int
    method: LinkageMethod = LinkageMethod.AVERAGE_BETWEEN
    is_similarity: bool = False
    stages: List[AgglomerationStage] = field(default_factory=list)

    def append(self, stage: AgglomerationStage) -> None:
        if stage.stage != len(self.stages) + 1:
            raise ValueError(f"stage {stage.stage} appended out of order")
        self.stages.append(stage)

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self) -> Iterator[AgglomerationStage]:
        return iter(self.stages)

    def __getitem__(self, idx: int) -> AgglomerationStage:
        return self.stages[idx]

    @property
    def complete(self) -> bool:
        return len(self.stages) == max(self.n_items - 1, 0)

    def coefficients(self) -> List[float]:
        return [s.coefficient for s in self.stages]

    def distances(self) -> List[float]:
        return [s.distance for s in self.stages]

    def replay(self, n_stages: int) -> List[int]:
        """
        Apply the first n_stages merges and report each item's cluster id.

        Args:
            n_stages: Number of stages to replay (0..n-1)

        Returns:
            For each original item, the stable id of the cluster it is in
        """
        if n_stages < 0 or n_stages > len(self.stages):
            raise ValueError(f"cannot replay {n_stages} of {len(self.stages)} stages")

        owner = list(range(self.n_items))
        members: Dict[int, List[int]] = {i: [i] for i in range(self.n_items)}
        for stage in self.stages[:n_stages]:
            moved = members.pop(stage.cluster2)
            for item in moved:
                owner[item] = stage.cluster1
            members[stage.cluster1].extend(moved)
        return owner

    def cut(self, k: int) -> List[int]:
        """
        Cluster labels for the k-cluster solution.

        Labels run 1..k, numbered in order of each cluster's first item.

        Args:
            k: Number of clusters (1..n)

        Returns:
            Label per original item
        """
        if k < 1 or k > self.n_items:
            raise ConfigurationError(f"cluster count {k} outside 1..{self.n_items}")
        owner = self.replay(self.n_items - k)
        numbering: Dict[int, int] = {}
        labels = []
        for cluster_id in owner:
            if cluster_id not in numbering:
                numbering[cluster_id] = len(numbering) + 1
            labels.append(numbering[cluster_id])
        return labels

    def to_linkage(self) -> np.ndarray:
        """
        Schedule as a scipy-style (n - 1) x 4 linkage matrix.

        Column 2 holds the coefficient, column 3 the merged cluster size.
        """
        current = {i: i for i in range(self.n_items)}
        rows = []
        for offset, stage in enumerate(self.stages):
            a = current[stage.cluster1]
            b = current[stage.cluster2]
            rows.append([min(a, b), max(a, b), stage.coefficient, stage.size])
            current[stage.cluster1] = self.n_items + offset
            del current[stage.cluster2]
        return np.array(rows, dtype=float).reshape(-1, 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'n_items': self.n_items,
            'method': self.method.value,
            'is_similarity': self.is_similarity,
            'stages': [s.to_dict() for s in self.stages]
        }


class AgglomerationEngine:
    """
    Repeatedly merges the closest pair of clusters until one remains.
    """

    def __init__(self,
                 method: LinkageMethod = LinkageMethod.AVERAGE_BETWEEN,
                 update: Optional[DistanceUpdate] = None,
                 is_similarity: bool = False):
        """
        Initialize an engine.

        Args:
            method: Linkage method; selects the Lance-Williams recurrence
                when no explicit update strategy is given
            update: Distance update strategy
            is_similarity: True when the state holds negated similarities;
                coefficients are then reported back on the similarity scale
        """
        self.method = LinkageMethod.parse(method)
        self.update = update or LanceWilliamsUpdate(self.method)
        self.is_similarity = is_similarity

    @staticmethod
    def find_closest_clusters(state: ClusterState) -> Optional[Tuple[int, int, float]]:
        """
        Find the pair with the smallest distance.

        The upper triangle is scanned with i ascending, then j ascending;
        the first pair found at the minimum wins. NaN distances count as
        +inf, so pairs without a distance merge last.

        Args:
            state: Current cluster state

        Returns:
            (i, j, distance) with i < j, or None with fewer than two clusters
        """
        if state.size < 2:
            return None

        rows, cols = np.triu_indices(state.size, k=1)
        upper = state.distances[rows, cols]
        upper = np.where(np.isnan(upper), np.inf, upper)
        best = int(np.argmin(upper))
        return int(rows[best]), int(cols[best]), float(upper[best])

    def run(self, state: ClusterState) -> AgglomerationSchedule:
        """
        Merge until a single cluster remains.

        Args:
            state: Initial state; consumed by the run

        Returns:
            Complete schedule with exactly n - 1 stages
        """
        n = state.size
        if n < 2:
            raise ConfigurationError("at least two cases are required")

        start_time = time.time()
        schedule = AgglomerationSchedule(n, self.method, self.is_similarity)
        formed_at: Dict[int, int] = {}
        cumulative = 0.0

        for stage_number in range(1, n):
            closest = self.find_closest_clusters(state)
            if closest is None:
                raise ScheduleError(stage_number)
            keep, remove, raw = closest

            keep_id, remove_id = state.ids[keep], state.ids[remove]
            row, merged_item = self.update.merged_row(state, keep, remove)
            state.merge(keep, remove, row, merged_item)

            value = -raw if self.is_similarity else raw
            if self.method is LinkageMethod.WARD and not self.is_similarity:
                cumulative += raw / 2.0
                coefficient = cumulative
            else:
                coefficient = value

            schedule.append(AgglomerationStage(
                stage=stage_number,
                cluster1=keep_id,
                cluster2=remove_id,
                coefficient=coefficient,
                cluster1_first_appears=formed_at.get(keep_id, 0),
                cluster2_first_appears=formed_at.get(remove_id, 0),
                distance=value,
                size=len(state.clusters[keep])
            ))
            formed_at[keep_id] = stage_number
            formed_at.pop(remove_id, None)

        _link_next_stages(schedule)
        logger.info(f"Agglomerated {n} clusters ({self.method.value}) in {time.time() - start_time:.2f}s")
        return schedule


def _link_next_stages(schedule: AgglomerationSchedule) -> None:
    pending: Dict[int, AgglomerationStage] = {}
    for stage in schedule:
        for cluster_id in (stage.cluster1, stage.cluster2):
            if cluster_id in pending:
                pending.pop(cluster_id).next_stage = stage.stage
        pending[stage.cluster1] = stage


def agglomerate(proximity: ProximityMatrix,
                method: LinkageMethod = LinkageMethod.AVERAGE_BETWEEN) -> AgglomerationSchedule:
    """
    Cluster cases from their proximity matrix.

    Args:
        proximity: Case proximities
        method: Linkage method

    Returns:
        AgglomerationSchedule
    """
    engine = AgglomerationEngine(method, is_similarity=proximity.is_similarity)
    return engine.run(ClusterState.from_proximity(proximity))
