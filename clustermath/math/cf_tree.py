"""
Cluster-feature (CF) tree pre-clustering.

This module compresses a potentially large case set into a bounded
number of sub-clusters, each summarised by sufficient statistics (count,
per-variable sums and sums of squares, per-variable category counts).
The sub-clusters then feed the second, hierarchical stage of two-step
clustering.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.special import xlogy

from clustermath.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Keeps ln() finite for variables with zero overall variance
MIN_VARIANCE = 1e-10

# Category key used for missing categorical cells
MISSING_CATEGORY = '<missing>'

REBUILD_FACTOR = 1.5

# Starting threshold used when none (or a non-positive one) is configured
DEFAULT_THRESHOLD = 0.5


class CFEntry:
    """
    Sufficient statistics for a group of cases.

    n always equals the number of owned case indices and, for every
    categorical variable, the total of its category counts.
    """

    def __init__(self, n_continuous: int, n_categorical: int):
        """
        Create an empty entry.

        Args:
            n_continuous: Number of continuous variables
            n_categorical: Number of categorical variables
        """
        self.n = 0
        self.sums = np.zeros(n_continuous)
        self.sum_squares = np.zeros(n_continuous)
        self.category_counts: List[Dict[str, int]] = [{} for _ in range(n_categorical)]
        self.cases: List[int] = []
        self.frozen = False
        self._xi: Optional[float] = None

    @classmethod
    def from_case(cls,
                  index: int,
                  continuous: Sequence[float],
                  categorical: Sequence[Optional[str]] = ()) -> 'CFEntry':
        """Entry holding a single case."""
        entry = cls(len(continuous), len(categorical))
        entry.add_case(index, continuous, categorical)
        return entry

    @property
    def n_continuous(self) -> int:
        return len(self.sums)

    @property
    def n_categorical(self) -> int:
        return len(self.category_counts)

    def _check_mutable(self) -> None:
        if self.frozen:
            raise ValueError("CF entry is frozen")

    def add_case(self,
                 index: int,
                 continuous: Sequence[float],
                 categorical: Sequence[Optional[str]] = ()) -> None:
        """
        Add one case.

        Args:
            index: Case index
            continuous: Continuous values of the case
            categorical: Category keys of the case (None for missing)
        """
        self._check_mutable()
        values = np.asarray(continuous, dtype=float)
        self.n += 1
        self.cases.append(index)
        self.sums += values
        self.sum_squares += values * values
        for counts, key in zip(self.category_counts, categorical):
            key = MISSING_CATEGORY if key is None else key
            counts[key] = counts.get(key, 0) + 1
        self._xi = None

    def absorb(self, other: 'CFEntry') -> None:
        """
        Merge another entry into this one in place.

        Args:
            other: Entry whose cases move into this one
        """
        self._check_mutable()
        self.n += other.n
        self.sums = self.sums + other.sums
        self.sum_squares = self.sum_squares + other.sum_squares
        for mine, theirs in zip(self.category_counts, other.category_counts):
            for key, count in theirs.items():
                mine[key] = mine.get(key, 0) + count
        self.cases.extend(other.cases)
        self._xi = None

    def combine(self, other: 'CFEntry') -> 'CFEntry':
        """
        Return a new entry summarising both entries.
        """
        merged = self.copy()
        merged.absorb(other)
        return merged

    def copy(self) -> 'CFEntry':
        entry = CFEntry(self.n_continuous, self.n_categorical)
        entry.n = self.n
        entry.sums = self.sums.copy()
        entry.sum_squares = self.sum_squares.copy()
        entry.category_counts = [dict(c) for c in self.category_counts]
        entry.cases = list(self.cases)
        entry._xi = self._xi
        return entry

    def freeze(self) -> None:
        self.frozen = True

    def centroid(self) -> np.ndarray:
        """Mean of each continuous variable."""
        if self.n == 0:
            return np.zeros(self.n_continuous)
        return self.sums / self.n

    def variances(self) -> np.ndarray:
        """Population variance of each continuous variable."""
        if self.n <= 1:
            return np.zeros(self.n_continuous)
        mean = self.centroid()
        return np.maximum(self.sum_squares / self.n - mean * mean, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'n': self.n,
            'centroid': self.centroid().tolist(),
            'variances': self.variances().tolist(),
            'category_counts': [dict(c) for c in self.category_counts],
            'cases': list(self.cases)
        }

    def __repr__(self) -> str:
        return f"CFEntry(n={self.n})"


def _entropy(counts: Dict[str, int], n: int) -> float:
    if n <= 0 or not counts:
        return 0.0
    p = np.fromiter(counts.values(), dtype=float) / n
    return float(-np.sum(xlogy(p, p)))


class CFDistance:
    """
    Distance between CF entries.

    Euclidean: distance between centroids.
    Log-likelihood: d(A, B) = xi_A + xi_B - xi_{A u B} with
    xi_v = -N_v * (sum_k 1/2 ln(floor_k + var_vk) + sum_c entropy_vc),
    where floor_k is the overall variance of variable k.
    """

    def __init__(self, use_euclidean: bool = False, variance_floor: Optional[Sequence[float]] = None):
        """
        Args:
            use_euclidean: Use centroid distance instead of log-likelihood
            variance_floor: Overall variance per continuous variable
        """
        self.use_euclidean = use_euclidean
        self.variance_floor = (None if variance_floor is None
                               else np.maximum(np.asarray(variance_floor, dtype=float), MIN_VARIANCE))

    @classmethod
    def for_data(cls, continuous: np.ndarray, use_euclidean: bool = False) -> 'CFDistance':
        """Distance whose variance floor comes from the full data set."""
        if continuous.size == 0 or continuous.shape[0] == 0:
            floor = np.zeros(continuous.shape[1] if continuous.ndim == 2 else 0)
        else:
            floor = np.nanvar(continuous, axis=0)
        return cls(use_euclidean, floor)

    def _floor(self, width: int) -> np.ndarray:
        if self.variance_floor is None or len(self.variance_floor) != width:
            return np.full(width, MIN_VARIANCE)
        return self.variance_floor

    def _xi_terms(self, n: int, sums: np.ndarray, sum_squares: np.ndarray,
                  category_counts: List[Dict[str, int]]) -> float:
        if n == 0:
            return 0.0
        if n > 1:
            mean = sums / n
            var = np.maximum(sum_squares / n - mean * mean, 0.0)
        else:
            var = np.zeros(len(sums))
        continuous = 0.5 * float(np.sum(np.log(self._floor(len(sums)) + var)))
        categorical = sum(_entropy(counts, n) for counts in category_counts)
        return -n * (continuous + categorical)

    def log_likelihood(self, entry: CFEntry) -> float:
        """xi for a single entry, cached until the entry changes."""
        if entry._xi is None:
            entry._xi = self._xi_terms(entry.n, entry.sums, entry.sum_squares, entry.category_counts)
        return entry._xi

    def _union_xi(self, a: CFEntry, b: CFEntry) -> float:
        counts = []
        for mine, theirs in zip(a.category_counts, b.category_counts):
            merged = dict(mine)
            for key, count in theirs.items():
                merged[key] = merged.get(key, 0) + count
            counts.append(merged)
        return self._xi_terms(a.n + b.n, a.sums + b.sums, a.sum_squares + b.sum_squares, counts)

    def __call__(self, a: CFEntry, b: CFEntry) -> float:
        if self.use_euclidean:
            return float(np.linalg.norm(a.centroid() - b.centroid()))
        d = self.log_likelihood(a) + self.log_likelihood(b) - self._union_xi(a, b)
        # exact arithmetic gives d >= 0; clip rounding noise
        return max(d, 0.0)


class CFTree:
    """
    Threshold-driven incremental compression of cases into CF entries.

    Each case joins its nearest entry when within the current threshold,
    otherwise it starts a new entry. When the entry count exceeds the
    capacity of a tree with the configured branching factor and depth,
    the threshold grows and entries within the new threshold of each other
    are merged.
    """

    def __init__(self,
                 distance: CFDistance,
                 max_branch: int = 8,
                 max_depth: int = 3,
                 threshold: float = 0.0):
        """
        Args:
            distance: CF-to-CF distance
            max_branch: Maximum entries per node
            max_depth: Maximum tree depth
            threshold: Initial absorption threshold
        """
        if max_branch < 2 or max_depth < 1:
            raise ConfigurationError("max-branch must be >= 2 and max-depth >= 1")
        self.distance = distance
        self.max_branch = max_branch
        self.max_depth = max_depth
        self.threshold = max(float(threshold), 0.0)
        self.entries: List[CFEntry] = []
        self.rebuilds = 0
        self.noise_cases: List[int] = []
        self.built = False

    @property
    def capacity(self) -> int:
        return self.max_branch ** self.max_depth

    def nearest(self, entry: CFEntry, candidates: Optional[List[CFEntry]] = None) -> Tuple[int, float]:
        """
        Position of and distance to the nearest candidate (first on ties).

        Returns:
            (-1, inf) when there are no candidates
        """
        candidates = self.entries if candidates is None else candidates
        best, best_distance = -1, float('inf')
        for i, other in enumerate(candidates):
            d = self.distance(entry, other)
            if d < best_distance:
                best, best_distance = i, d
        return best, best_distance

    def insert(self,
               index: int,
               continuous: Sequence[float],
               categorical: Sequence[Optional[str]] = ()) -> None:
        """
        Insert one case.

        Args:
            index: Case index
            continuous: Continuous values
            categorical: Category keys
        """
        if self.built:
            raise ValueError("CF tree is already built")

        case_entry = CFEntry.from_case(index, continuous, categorical)
        position, d = self.nearest(case_entry)
        if position >= 0 and d <= self.threshold:
            self.entries[position].add_case(index, continuous, categorical)
        else:
            self.entries.append(case_entry)

        if len(self.entries) > self.capacity:
            self.rebuild()

    def _smallest_positive_distance(self) -> float:
        smallest = float('inf')
        for i in range(len(self.entries)):
            for j in range(i + 1, len(self.entries)):
                d = self.distance(self.entries[i], self.entries[j])
                if 0.0 < d < smallest:
                    smallest = d
        return smallest if np.isfinite(smallest) else 0.0

    def _condense(self) -> None:
        condensed: List[CFEntry] = []
        for entry in self.entries:
            position, d = self.nearest(entry, condensed)
            if position >= 0 and d <= self.threshold:
                condensed[position].absorb(entry)
            else:
                condensed.append(entry)
        self.entries = condensed

    def rebuild(self) -> None:
        """
        Raise the threshold until the entries fit within capacity.
        """
        start_time = time.time()
        before = len(self.entries)
        while len(self.entries) > self.capacity:
            if self.threshold > 0:
                self.threshold *= REBUILD_FACTOR
            else:
                self.threshold = self._smallest_positive_distance()
            self._condense()
            self.rebuilds += 1
        logger.info(f"CF tree rebuilt: {before} -> {len(self.entries)} entries, "
                    f"threshold {self.threshold:.4f} ({time.time() - start_time:.2f}s)")

    def handle_noise(self,
                     noise_threshold: float,
                     continuous: np.ndarray,
                     categorical: Sequence[Sequence[Optional[str]]]) -> List[int]:
        """
        Dissolve small entries and reassign their cases.

        Entries with fewer cases than noise_threshold times the largest
        entry are removed; each of their cases joins the nearest surviving
        entry.

        Args:
            noise_threshold: Fraction of the largest entry size
            continuous: Full continuous data (cases x variables)
            categorical: Full categorical keys (cases x variables)

        Returns:
            Indices of the reassigned cases
        """
        if not self.entries:
            return []

        cutoff = max(e.n for e in self.entries) * noise_threshold
        survivors = [e for e in self.entries if e.n >= cutoff]
        dissolved = [e for e in self.entries if e.n < cutoff]

        moved = []
        for entry in dissolved:
            for index in entry.cases:
                cats = categorical[index] if categorical else ()
                case_entry = CFEntry.from_case(index, continuous[index], cats)
                position, _ = self.nearest(case_entry, survivors)
                survivors[position].add_case(index, continuous[index], cats)
                moved.append(index)

        self.entries = survivors
        self.noise_cases = moved
        if moved:
            logger.info(f"Reassigned {len(moved)} cases from {len(dissolved)} small sub-clusters")
        return moved

    def finish(self) -> List[CFEntry]:
        """Freeze the entries and return them."""
        for entry in self.entries:
            entry.freeze()
        self.built = True
        return list(self.entries)


def build_cf_tree(continuous: np.ndarray,
                  categorical: Optional[Sequence[Sequence[Optional[str]]]] = None,
                  use_euclidean: bool = False,
                  max_branch: int = 8,
                  max_depth: int = 3,
                  initial_threshold: float = 0.0,
                  noise: bool = False,
                  noise_threshold: float = 0.25,
                  seed: Optional[int] = None) -> Tuple[List[CFEntry], CFTree]:
    """
    Pre-cluster cases into CF entries.

    Cases are inserted in a random order drawn from `seed`, so a fixed
    seed reproduces the same sub-clusters.

    Args:
        continuous: Cases x continuous variables (may have zero columns)
        categorical: Cases x categorical keys
        use_euclidean: Centroid distance instead of log-likelihood
        max_branch: Maximum branching factor
        max_depth: Maximum depth
        initial_threshold: Starting absorption threshold; 0 or less
            starts at DEFAULT_THRESHOLD
        noise: Whether to dissolve small sub-clusters
        noise_threshold: Fraction of the largest sub-cluster below which
            a sub-cluster is dissolved
        seed: Random seed for the insertion order

    Returns:
        (sub-clusters, the tree that produced them)
    """
    continuous = np.asarray(continuous, dtype=float)
    if continuous.ndim == 1:
        continuous = continuous.reshape(-1, 1)
    n = continuous.shape[0]
    if n == 0:
        raise ConfigurationError("empty dataset")
    categorical = list(categorical) if categorical is not None else []
    if categorical and len(categorical) != n:
        raise ConfigurationError("continuous and categorical data disagree on case count")

    start_time = time.time()
    threshold = initial_threshold if initial_threshold > 0 else DEFAULT_THRESHOLD
    tree = CFTree(CFDistance.for_data(continuous, use_euclidean), max_branch, max_depth, threshold)

    rng = np.random.RandomState(seed)
    for index in rng.permutation(n):
        index = int(index)
        tree.insert(index, continuous[index], categorical[index] if categorical else ())

    if noise:
        tree.handle_noise(noise_threshold, continuous, categorical)

    entries = tree.finish()
    logger.info(f"CF tree: {n} cases -> {len(entries)} sub-clusters, {tree.rebuilds} rebuilds "
                f"in {time.time() - start_time:.2f}s")
    return entries, tree
