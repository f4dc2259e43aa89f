"""
Two-step clustering: CF-tree pre-clustering followed by hierarchical
agglomeration of the sub-clusters.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from clustermath.errors import ConfigurationError
from clustermath.math.agglomeration import (
    AgglomerationEngine, AgglomerationSchedule, ClusterState, RecomputeUpdate
)
from clustermath.math.cf_tree import CFDistance, CFEntry, build_cf_tree
from clustermath.math.distance import StandardizeMethod, transform_values
from clustermath.math.options import LinkageMethod, TwoStepOptions
from clustermath.utils.diagnostics import Diagnostics
from clustermath.utils.general import map_rest, safe_divide, symmetric_from_pairs

logger = logging.getLogger(__name__)

# Criterion ratio below which adding clusters stops paying off
CRITERION_RATIO_CUTOFF = 0.04

# A distance ratio must beat the runner-up by this factor to win outright
DISTANCE_RATIO_MARGIN = 1.15


@dataclass
class AutoClusteringRow:
    """One row of the auto-clustering table."""

    k: int
    criterion: float
    change: Optional[float] = None
    ratio_of_changes: Optional[float] = None
    ratio_of_distances: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'k': self.k,
            'criterion': self.criterion,
            'change': self.change,
            'ratio_of_changes': self.ratio_of_changes,
            'ratio_of_distances': self.ratio_of_distances
        }


def merge_distance_for(distances: Sequence[float], k: int) -> float:
    """
    Distance of the merge that reduces k clusters to k - 1.

    Args:
        distances: Merge distances in stage order
        k: Cluster count (2..len(distances) + 1)
    """
    m = len(distances) + 1
    return float(distances[m - k])


def distance_ratios(distances: Sequence[float], upper: int) -> Dict[int, float]:
    """
    Ratio d(k) / d(k + 1) of successive merge distances for k = 2..upper.

    A zero denominator gives ratio 0.
    """
    m = len(distances) + 1
    ratios = {}
    for k in range(2, min(upper, m - 1) + 1):
        ratios[k] = safe_divide(merge_distance_for(distances, k), merge_distance_for(distances, k + 1))
    return ratios


def criterion_changes(criterion: Sequence[float]) -> List[Optional[float]]:
    """
    Change of the criterion from k - 1 to k clusters (None for k = 1).
    """
    return [None] + [criterion[i] - criterion[i - 1] for i in range(1, len(criterion))]


def select_k(merge_distances: Sequence[float],
             max_k: int = 15,
             criterion: Optional[Sequence[float]] = None) -> int:
    """
    Choose the number of clusters.

    When criterion values (BIC or AIC for k = 1, 2, ...) are given, an
    initial estimate is the last k before the criterion improvement falls
    below 4% of the improvement from one to two clusters. The estimate is
    then refined with the ratios of successive merge distances: the k with
    the largest ratio wins if it beats the second largest by 15%, otherwise
    the larger of the two.

    Args:
        merge_distances: Merge distances in stage order
        max_k: Largest cluster count considered
        criterion: Optional information criterion per k, starting at k = 1

    Returns:
        Chosen number of clusters
    """
    n_clusters = len(merge_distances) + 1
    upper = max(1, min(max_k, n_clusters))
    if upper == 1:
        return 1

    estimate = upper
    if criterion is not None and len(criterion) >= 2:
        changes = criterion_changes(criterion[:upper])
        first = changes[1]
        if first >= 0:
            return 1
        for k in range(3, len(changes) + 1):
            if safe_divide(changes[k - 1], first) < CRITERION_RATIO_CUTOFF:
                estimate = k - 1
                break
        else:
            estimate = len(changes)

    ratios = distance_ratios(merge_distances, estimate)
    if not ratios:
        return estimate

    ranked = sorted(ratios, key=lambda k: (-ratios[k], k))
    best = ranked[0]
    if len(ranked) == 1:
        return best
    second = ranked[1]
    if ratios[best] >= DISTANCE_RATIO_MARGIN * ratios[second]:
        return best
    return max(best, second)


@dataclass
class TwoStepResult:
    """
    Outcome of a two-step run.

    Attributes:
        labels: Final cluster (1..k) per case
        k: Number of clusters
        subclusters: CF entries produced by the pre-clustering step
        subcluster_labels: Final cluster of each sub-cluster
        schedule: Agglomeration schedule over the sub-clusters
        auto_clustering: Criterion table, when K was chosen automatically
        threshold: Final CF-tree threshold
        rebuilds: Number of CF-tree rebuilds
        noise_cases: Cases reassigned from dissolved sub-clusters
        diagnostics: Warnings raised during the run
    """

    labels: np.ndarray
    k: int
    subclusters: List[CFEntry]
    subcluster_labels: List[int]
    schedule: AgglomerationSchedule
    auto_clustering: Optional[List[AutoClusteringRow]] = None
    threshold: float = 0.0
    rebuilds: int = 0
    noise_cases: List[int] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def cluster_members(self) -> Dict[int, List[int]]:
        """Case indices per final cluster."""
        members: Dict[int, List[int]] = {c: [] for c in range(1, self.k + 1)}
        for index, label in enumerate(self.labels):
            members[int(label)].append(index)
        return members

    def to_dict(self) -> Dict[str, Any]:
        return {
            'k': self.k,
            'labels': [int(label) for label in self.labels],
            'subclusters': [e.to_dict() for e in self.subclusters],
            'subcluster_labels': list(self.subcluster_labels),
            'schedule': self.schedule.to_dict(),
            'auto_clustering': (None if self.auto_clustering is None
                                else [row.to_dict() for row in self.auto_clustering]),
            'threshold': self.threshold,
            'rebuilds': self.rebuilds,
            'noise_cases': list(self.noise_cases),
            'diagnostics': self.diagnostics.to_dict()
        }


class TwoStepClusterer:
    """
    Runs standardization, CF-tree pre-clustering, sub-cluster agglomeration,
    selection of K and label propagation, in that order.
    """

    def __init__(self,
                 options: Optional[TwoStepOptions] = None,
                 k_selector: Optional[Callable[..., int]] = None):
        """
        Args:
            options: Two-step options
            k_selector: Chooses K from (merge distances, max_k, criterion);
                defaults to select_k
        """
        self.options = options or TwoStepOptions()
        self.k_selector = k_selector or select_k

    def _prepare(self, continuous, categorical):
        data = np.asarray(continuous if continuous is not None else [], dtype=float)
        cats = [list(row) for row in categorical] if categorical is not None else []

        n = data.shape[0] if data.size else len(cats)
        if data.size == 0:
            data = np.zeros((n, 0))
        elif data.ndim == 1:
            data = data.reshape(-1, 1)

        if n == 0:
            raise ConfigurationError("empty dataset")
        if data.shape[1] == 0 and (not cats or not cats[0]):
            raise ConfigurationError("no variables specified")
        if cats and len(cats) != n:
            raise ConfigurationError("continuous and categorical data disagree on case count")
        if np.isnan(data).any():
            raise ConfigurationError("two-step clustering requires complete cases")
        if self.options.use_euclidean and cats and cats[0]:
            raise ConfigurationError("euclidean distance requires continuous variables only")

        if self.options.standardize and data.shape[1]:
            data = transform_values(data, StandardizeMethod.Z_SCORES)
        return data, cats

    def fit(self,
            continuous: Optional[np.ndarray] = None,
            categorical: Optional[Sequence[Sequence[Optional[str]]]] = None) -> TwoStepResult:
        """
        Cluster cases.

        Args:
            continuous: Cases x continuous variables
            categorical: Cases x category keys

        Returns:
            TwoStepResult
        """
        start_time = time.time()
        opts = self.options
        diagnostics = Diagnostics()
        data, cats = self._prepare(continuous, categorical)
        n = data.shape[0]

        entries, tree = build_cf_tree(
            data, cats,
            use_euclidean=opts.use_euclidean,
            max_branch=opts.max_branch,
            max_depth=opts.max_depth,
            initial_threshold=opts.initial_threshold,
            noise=opts.noise,
            noise_threshold=opts.noise_threshold,
            seed=opts.seed
        )
        m = len(entries)
        distance = tree.distance

        if m >= 2:
            pairs = map_rest(distance, entries)
            state = ClusterState(symmetric_from_pairs(m, pairs), items=entries)
            engine = AgglomerationEngine(LinkageMethod.AVERAGE_BETWEEN, RecomputeUpdate(distance))
            schedule = engine.run(state)
        else:
            schedule = AgglomerationSchedule(m, LinkageMethod.AVERAGE_BETWEEN)

        auto_table = None
        if opts.cluster_mode == 'fixed':
            k = opts.fixed_k
            if k > m:
                diagnostics.warn(f"requested {k} clusters but only {m} sub-clusters were formed")
                logger.warning(f"Requested {k} clusters, using {m} sub-clusters")
                k = m
        else:
            upper = max(1, min(opts.max_k, m))
            criterion = information_criteria(schedule, entries, distance, n, upper, opts.criterion)
            auto_table = auto_clustering_table(criterion, schedule.distances())
            k = self.k_selector(schedule.distances(), opts.max_k, criterion)

        subcluster_labels = schedule.cut(k) if m >= 1 else []
        labels = np.zeros(n, dtype=int)
        for entry, label in zip(entries, subcluster_labels):
            labels[entry.cases] = label

        logger.info(f"Two-step clustering: {n} cases, {m} sub-clusters, {k} clusters "
                    f"in {time.time() - start_time:.2f}s")
        return TwoStepResult(
            labels=labels,
            k=k,
            subclusters=entries,
            subcluster_labels=subcluster_labels,
            schedule=schedule,
            auto_clustering=auto_table,
            threshold=tree.threshold,
            rebuilds=tree.rebuilds,
            noise_cases=list(tree.noise_cases),
            diagnostics=diagnostics
        )


def _parameter_count(k: int, entries: List[CFEntry]) -> int:
    first = entries[0]
    levels = 0
    for v in range(first.n_categorical):
        seen = set()
        for entry in entries:
            seen.update(entry.category_counts[v])
        levels += len(seen) - 1
    return k * (2 * first.n_continuous + levels)


def information_criteria(schedule: AgglomerationSchedule,
                         entries: List[CFEntry],
                         distance: CFDistance,
                         n_cases: int,
                         upper: int,
                         criterion: str = 'bic') -> List[float]:
    """
    BIC or AIC of the k-cluster solution for k = 1..upper.

    Clusters are formed by merging the CF entries that share a label in
    the schedule cut; each contributes -2 * xi to the criterion.

    Args:
        schedule: Schedule over the entries
        entries: CF entries
        distance: Provides the log-likelihood of a merged entry
        n_cases: Total number of cases
        upper: Largest k evaluated
        criterion: 'bic' or 'aic'

    Returns:
        Criterion per k, starting at k = 1
    """
    values = []
    for k in range(1, upper + 1):
        labels = schedule.cut(k)
        merged: Dict[int, CFEntry] = {}
        for entry, label in zip(entries, labels):
            merged[label] = entry.copy() if label not in merged else merged[label].combine(entry)
        xi = sum(distance.log_likelihood(c) for c in merged.values())
        params = _parameter_count(k, entries)
        penalty = params * np.log(n_cases) if criterion == 'bic' else 2.0 * params
        values.append(float(-2.0 * xi + penalty))
    return values


def auto_clustering_table(criterion: Sequence[float],
                          merge_distances: Sequence[float]) -> List[AutoClusteringRow]:
    """
    Rows of criterion, change, ratio of changes and ratio of distances.
    """
    changes = criterion_changes(criterion)
    first = changes[1] if len(changes) > 1 else None
    ratios = distance_ratios(merge_distances, len(criterion))
    rows = []
    for i, value in enumerate(criterion):
        k = i + 1
        change = changes[i]
        rows.append(AutoClusteringRow(
            k=k,
            criterion=value,
            change=change,
            ratio_of_changes=None if change is None or not first else change / first,
            ratio_of_distances=ratios.get(k)
        ))
    return rows
