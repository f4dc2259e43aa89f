"""
Proximity measures for hierarchical clustering.

This module provides the scalar dissimilarity/similarity between two case
vectors for interval, count and binary data, the optional value and
measure transformations applied around it, and the full proximity matrix
used to seed an agglomeration run.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import distance as spd

from clustermath.errors import ConfigurationError
from clustermath.utils.general import map_rest, safe_divide, symmetric_from_pairs

logger = logging.getLogger(__name__)

# Returned by coefficients whose denominator vanishes when no finite
# "infinitely similar" value exists.
LARGE_SENTINEL = 9999.999


class MeasureFamily(Enum):
    INTERVAL = 'interval'
    COUNTS = 'counts'
    BINARY = 'binary'


class StandardizeMethod(Enum):
    NONE = 'none'
    Z_SCORES = 'z'
    RANGE_MINUS_ONE_TO_ONE = 'range'
    RANGE_ZERO_TO_ONE = 'rescale'
    MAX_MAGNITUDE_ONE = 'max'
    MEAN_ONE = 'mean'
    SD_ONE = 'sd'

    @classmethod
    def parse(cls, name: Any) -> 'StandardizeMethod':
        if isinstance(name, cls):
            return name
        if name is None:
            return cls.NONE
        key = re.sub(r'[^a-z0-9]', '', str(name).lower())
        aliases = {
            'none': cls.NONE, 'z': cls.Z_SCORES, 'zscore': cls.Z_SCORES, 'zscores': cls.Z_SCORES,
            'range': cls.RANGE_MINUS_ONE_TO_ONE, 'range11': cls.RANGE_MINUS_ONE_TO_ONE,
            'rescale': cls.RANGE_ZERO_TO_ONE, 'range01': cls.RANGE_ZERO_TO_ONE,
            'max': cls.MAX_MAGNITUDE_ONE, 'maxmagnitude': cls.MAX_MAGNITUDE_ONE,
            'mean': cls.MEAN_ONE, 'sd': cls.SD_ONE, 'standarddeviation': cls.SD_ONE,
        }
        if key in aliases:
            return aliases[key]
        raise ConfigurationError(f"unknown standardization method: {name}")


# ---------------------------------------------------------------------------
# Interval measures
# ---------------------------------------------------------------------------

def _pearson(a: np.ndarray, b: np.ndarray) -> float:
    if a.size < 2:
        return 0.0
    da = a - a.mean()
    db = b - b.mean()
    denom = math.sqrt(float(np.dot(da, da)) * float(np.dot(db, db)))
    return safe_divide(float(np.dot(da, db)), denom)


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    denom = math.sqrt(float(np.dot(a, a)) * float(np.dot(b, b)))
    return safe_divide(float(np.dot(a, b)), denom)


def _power_sum(a: np.ndarray, b: np.ndarray, p: float) -> float:
    return float(np.sum(np.abs(a - b) ** p))


INTERVAL_MEASURES: Dict[str, Callable[[np.ndarray, np.ndarray, 'MeasureSpec'], float]] = {
    'SEUCLID': lambda a, b, measure: float(spd.sqeuclidean(a, b)),
    'EUCLID': lambda a, b, measure: float(spd.euclidean(a, b)),
    'BLOCK': lambda a, b, measure: float(spd.cityblock(a, b)),
    'CHEBYCHEV': lambda a, b, measure: float(spd.chebyshev(a, b)),
    'MINKOWSKI': lambda a, b, measure: _power_sum(a, b, measure.power) ** (1.0 / measure.power),
    'POWER': lambda a, b, measure: _power_sum(a, b, measure.power) ** (1.0 / measure.root),
    # Zero-variance and zero-norm vectors count as uncorrelated: distance 1.
    'CORRELATION': lambda a, b, measure: 1.0 - _pearson(a, b),
    'COSINE': lambda a, b, measure: 1.0 - _cosine(a, b),
}

# Equivalent scipy pdist metric names, used on complete data
_PDIST_METRICS = {
    'SEUCLID': 'sqeuclidean',
    'EUCLID': 'euclidean',
    'BLOCK': 'cityblock',
    'CHEBYCHEV': 'chebyshev',
    'CORRELATION': 'correlation',
    'COSINE': 'cosine',
}


# ---------------------------------------------------------------------------
# Count measures
# ---------------------------------------------------------------------------

def chi_square(a: np.ndarray, b: np.ndarray) -> float:
    """
    Chi-square dissimilarity between two frequency vectors.

    Each component contributes 2 * (x - e)^2 / e with e = (x + y) / 2;
    components with e == 0 contribute nothing.
    """
    expected = (a + b) / 2.0
    mask = expected > 0
    if not mask.any():
        return 0.0
    terms = 2.0 * (a[mask] - expected[mask]) ** 2 / expected[mask]
    return math.sqrt(float(np.sum(terms)))


def phi_square(a: np.ndarray, b: np.ndarray) -> float:
    """Chi-square divided by the square root of the combined frequency."""
    total = float(np.sum(a) + np.sum(b))
    if total <= 0:
        return 0.0
    return chi_square(a, b) / math.sqrt(total)


COUNT_MEASURES = {
    'CHISQ': lambda a, b, measure: chi_square(a, b),
    'PH2': lambda a, b, measure: phi_square(a, b),
}


# ---------------------------------------------------------------------------
# Binary measures
# ---------------------------------------------------------------------------

def contingency(a: Sequence[float],
                b: Sequence[float],
                present: float = 1,
                absent: float = 0) -> Tuple[int, int, int, int]:
    """
    Reduce two binary vectors to a 2x2 contingency count.

    Components where either value is neither the present nor the absent
    value are ignored.

    Args:
        a: First vector
        b: Second vector
        present: Value meaning "present"
        absent: Value meaning "absent"

    Returns:
        (a, b, c, d): both present, present/absent, absent/present, both absent
    """
    both = 0
    only_first = 0
    only_second = 0
    neither = 0
    for x, y in zip(a, b):
        x_present, x_absent = x == present, x == absent
        y_present, y_absent = y == present, y == absent
        if not (x_present or x_absent) or not (y_present or y_absent):
            continue
        if x_present and y_present:
            both += 1
        elif x_present:
            only_first += 1
        elif y_present:
            only_second += 1
        else:
            neither += 1
    return both, only_first, only_second, neither


@dataclass(frozen=True)
class BinaryCoefficient:
    """
    A closed-form coefficient over a 2x2 contingency table.

    Attributes:
        name: Canonical measure name
        formula: Function of (a, b, c, d)
        similarity: True if larger values mean more alike
        zero_division: Value returned when the formula's denominator is 0
    """

    name: str
    formula: Callable[[int, int, int, int, float], float]
    similarity: bool
    zero_division: float = 0.0

    def __call__(self, a: int, b: int, c: int, d: int) -> float:
        return self.formula(a, b, c, d, self.zero_division)


def _lambda_terms(a, b, c, d):
    t1 = max(a, b) + max(c, d) + max(a, c) + max(b, d)
    t2 = max(a + c, b + d) + max(a + b, c + d)
    return t1, t2


def _goodman_kruskal_lambda(a, b, c, d, z):
    t1, t2 = _lambda_terms(a, b, c, d)
    return safe_divide(t1 - t2, 2 * (a + b + c + d) - t2, z)


def _anderberg_d(a, b, c, d, z):
    t1, t2 = _lambda_terms(a, b, c, d)
    return safe_divide(t1 - t2, 2 * (a + b + c + d), z)


def _yule_y(a, b, c, d, z):
    ad, bc = math.sqrt(a * d), math.sqrt(b * c)
    return safe_divide(ad - bc, ad + bc, z)


def _sokal_sneath_4(a, b, c, d, z):
    terms = [safe_divide(a, a + b, z), safe_divide(a, a + c, z),
             safe_divide(d, b + d, z), safe_divide(d, c + d, z)]
    return sum(terms) / 4.0


def _binary(name, formula, similarity, zero_division=0.0):
    return name, BinaryCoefficient(name, formula, similarity, zero_division)


BINARY_MEASURES: Dict[str, BinaryCoefficient] = dict([
    # Dissimilarities
    _binary('BEUCLID', lambda a, b, c, d, z: math.sqrt(b + c), False),
    _binary('BSEUCLID', lambda a, b, c, d, z: float(b + c), False),
    _binary('SIZE', lambda a, b, c, d, z: safe_divide((b - c) ** 2, (a + b + c + d) ** 2, z), False),
    _binary('PATTERN', lambda a, b, c, d, z: safe_divide(b * c, (a + b + c + d) ** 2, z), False),
    _binary('VARIANCE', lambda a, b, c, d, z: safe_divide(b + c, 4 * (a + b + c + d), z), False),
    _binary('BSHAPE', lambda a, b, c, d, z: safe_divide(
        (a + b + c + d) * (b + c) - (b - c) ** 2, (a + b + c + d) ** 2, z), False),
    _binary('BLWMN', lambda a, b, c, d, z: safe_divide(b + c, 2 * a + b + c, z), False),
    # Similarities
    _binary('DISPER', lambda a, b, c, d, z: safe_divide(a * d - b * c, (a + b + c + d) ** 2, z), True),
    _binary('RR', lambda a, b, c, d, z: safe_divide(a, a + b + c + d, z), True),
    _binary('SM', lambda a, b, c, d, z: safe_divide(a + d, a + b + c + d, z), True),
    _binary('JACCARD', lambda a, b, c, d, z: safe_divide(a, a + b + c, z), True),
    _binary('DICE', lambda a, b, c, d, z: safe_divide(2 * a, 2 * a + b + c, z), True),
    _binary('SS1', lambda a, b, c, d, z: safe_divide(2 * (a + d), 2 * (a + d) + b + c, z), True),
    _binary('RT', lambda a, b, c, d, z: safe_divide(a + d, a + d + 2 * (b + c), z), True),
    _binary('SS2', lambda a, b, c, d, z: safe_divide(a, a + 2 * (b + c), z), True),
    _binary('K1', lambda a, b, c, d, z: safe_divide(a, b + c, z), True, LARGE_SENTINEL),
    _binary('SS3', lambda a, b, c, d, z: safe_divide(a + d, b + c, z), True, LARGE_SENTINEL),
    _binary('K2', lambda a, b, c, d, z: (safe_divide(a, a + b, z) + safe_divide(a, a + c, z)) / 2.0, True),
    _binary('SS4', _sokal_sneath_4, True),
    _binary('HAMANN', lambda a, b, c, d, z: safe_divide((a + d) - (b + c), a + b + c + d, z), True),
    _binary('OCHIAI', lambda a, b, c, d, z: safe_divide(a, math.sqrt((a + b) * (a + c)), z), True),
    _binary('SS5', lambda a, b, c, d, z: safe_divide(
        a * d, math.sqrt((a + b) * (a + c) * (b + d) * (c + d)), z), True),
    _binary('PHI', lambda a, b, c, d, z: safe_divide(
        a * d - b * c, math.sqrt((a + b) * (a + c) * (b + d) * (c + d)), z), True),
    _binary('LAMBDA', _goodman_kruskal_lambda, True),
    _binary('D', _anderberg_d, True),
    _binary('Y', _yule_y, True),
    _binary('Q', lambda a, b, c, d, z: safe_divide(a * d - b * c, a * d + b * c, z), True),
])


_MEASURE_ALIASES = {
    'squaredeuclidean': 'SEUCLID', 'sqeuclidean': 'SEUCLID', 'seuclid': 'SEUCLID',
    'euclidean': 'EUCLID', 'euclid': 'EUCLID',
    'manhattan': 'BLOCK', 'block': 'BLOCK', 'cityblock': 'BLOCK',
    'chebyshev': 'CHEBYCHEV', 'chebychev': 'CHEBYCHEV',
    'minkowski': 'MINKOWSKI',
    'power': 'POWER', 'custom': 'POWER', 'customized': 'POWER',
    'correlation': 'CORRELATION', 'pearson': 'CORRELATION', 'pearsoncorrelation': 'CORRELATION',
    'cosine': 'COSINE',
    'chisq': 'CHISQ', 'chisquare': 'CHISQ',
    'ph2': 'PH2', 'phisquare': 'PH2',
    'jaccard': 'JACCARD', 'dice': 'DICE',
    'simplematching': 'SM', 'russellrao': 'RR', 'rogerstanimoto': 'RT',
    'hamann': 'HAMANN', 'ochiai': 'OCHIAI', 'lambda': 'LAMBDA',
    'yulesy': 'Y', 'yulesq': 'Q', 'lancewilliams': 'BLWMN',
}


@dataclass(frozen=True)
class MeasureSpec:
    """
    A selected proximity measure and its parameters.

    Attributes:
        name: Canonical measure name (e.g. 'SEUCLID', 'JACCARD', 'CHISQ')
        power: Exponent p for MINKOWSKI and POWER
        root: Root r for POWER
        present: Value meaning "present" for binary measures
        absent: Value meaning "absent" for binary measures
    """

    name: str = 'SEUCLID'
    power: float = 2.0
    root: float = 2.0
    present: float = 1.0
    absent: float = 0.0

    @classmethod
    def create(cls, name: Any = 'SEUCLID', **params) -> 'MeasureSpec':
        """
        Resolve a measure by canonical name or alias.

        Args:
            name: Measure name
            **params: power, root, present, absent

        Returns:
            MeasureSpec
        """
        canonical = str(name).upper()
        if canonical not in INTERVAL_MEASURES and canonical not in COUNT_MEASURES \
                and canonical not in BINARY_MEASURES:
            key = re.sub(r'[^a-z0-9]', '', str(name).lower())
            if key not in _MEASURE_ALIASES:
                raise ConfigurationError(f"unknown proximity measure: {name}")
            canonical = _MEASURE_ALIASES[key]

        measure = cls(canonical, **{k: float(v) for k, v in params.items() if v is not None})
        if canonical in ('MINKOWSKI', 'POWER') and measure.power <= 0:
            raise ConfigurationError("power must be positive")
        if canonical == 'POWER' and measure.root <= 0:
            raise ConfigurationError("root must be positive")
        return measure

    @property
    def family(self) -> MeasureFamily:
        if self.name in INTERVAL_MEASURES:
            return MeasureFamily.INTERVAL
        if self.name in COUNT_MEASURES:
            return MeasureFamily.COUNTS
        return MeasureFamily.BINARY

    @property
    def is_similarity(self) -> bool:
        if self.family is MeasureFamily.BINARY:
            return BINARY_MEASURES[self.name].similarity
        return False


def _complete_pairs(a: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    keep = ~(np.isnan(a) | np.isnan(b))
    return a[keep], b[keep]


def distance(a: Sequence[float],
             b: Sequence[float],
             measure: Optional[MeasureSpec] = None,
             variables: Optional[Sequence[int]] = None) -> float:
    """
    Proximity between two case vectors.

    Components missing (NaN) in either vector are dropped first. An empty
    comparison yields 0.

    Args:
        a: First case vector
        b: Second case vector
        measure: Measure selection, squared Euclidean by default
        variables: Optional positions of the variables to compare

    Returns:
        Dissimilarity, or similarity for similarity measures
    """
    measure = measure or MeasureSpec()
    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    if variables is not None:
        idx = list(variables)
        x, y = x[idx], y[idx]
    x, y = _complete_pairs(x, y)

    family = measure.family
    if family is MeasureFamily.BINARY:
        return BINARY_MEASURES[measure.name](*contingency(x, y, measure.present, measure.absent))
    if x.size == 0:
        return 0.0
    if family is MeasureFamily.COUNTS:
        return COUNT_MEASURES[measure.name](x, y, measure)
    return INTERVAL_MEASURES[measure.name](x, y, measure)


# ---------------------------------------------------------------------------
# Value and measure transformations
# ---------------------------------------------------------------------------

def transform_values(values: np.ndarray, method, by: str = 'variable') -> np.ndarray:
    """
    Standardize values before proximities are computed.

    Degenerate scales (zero range, zero standard deviation, zero mean or
    zero maximum magnitude) leave the affected values unchanged, except for
    z-scores and 0..1 rescaling which map a constant variable to 0.

    Args:
        values: Cases x variables
        method: StandardizeMethod
        by: 'variable' (columns) or 'case' (rows)

    Returns:
        Transformed copy of values
    """
    method = StandardizeMethod.parse(method)
    data = np.array(values, dtype=float, copy=True)
    if method is StandardizeMethod.NONE or data.size == 0:
        return data
    if by == 'case':
        data = data.T

    with np.errstate(invalid='ignore', divide='ignore'):
        if method is StandardizeMethod.Z_SCORES:
            mean = np.nanmean(data, axis=0)
            sd = np.nanstd(data, axis=0, ddof=1) if data.shape[0] > 1 else np.zeros(data.shape[1])
            centered = data - mean
            result = np.where(sd > 0, centered / np.where(sd > 0, sd, 1.0), 0.0)
        elif method is StandardizeMethod.RANGE_MINUS_ONE_TO_ONE:
            spread = np.nanmax(data, axis=0) - np.nanmin(data, axis=0)
            result = np.where(spread > 0, data / np.where(spread > 0, spread, 1.0), data)
        elif method is StandardizeMethod.RANGE_ZERO_TO_ONE:
            low = np.nanmin(data, axis=0)
            spread = np.nanmax(data, axis=0) - low
            result = np.where(spread > 0, (data - low) / np.where(spread > 0, spread, 1.0), 0.0)
        elif method is StandardizeMethod.MAX_MAGNITUDE_ONE:
            peak = np.nanmax(np.abs(data), axis=0)
            result = np.where(peak > 0, data / np.where(peak > 0, peak, 1.0), data)
        elif method is StandardizeMethod.MEAN_ONE:
            mean = np.nanmean(data, axis=0)
            result = np.where(mean != 0, data / np.where(mean != 0, mean, 1.0), data)
        else:
            sd = np.nanstd(data, axis=0, ddof=1) if data.shape[0] > 1 else np.zeros(data.shape[1])
            result = np.where(sd > 0, data / np.where(sd > 0, sd, 1.0), data)

    # keep missing values missing
    result = np.where(np.isnan(data), np.nan, result)
    return result.T if by == 'case' else result


class ProximityMatrix:
    """
    Pairwise proximities between cases.
    """

    def __init__(self,
                 values: np.ndarray,
                 is_similarity: bool = False,
                 measure: str = 'SEUCLID',
                 labels: Optional[List[str]] = None):
        """
        Initialize a proximity matrix.

        Args:
            values: Symmetric n x n matrix
            is_similarity: True if larger values mean more alike
            measure: Name of the measure that produced the values
            labels: Optional case labels
        """
        self.values = np.asarray(values, dtype=float)
        self.is_similarity = is_similarity
        self.measure = measure
        self.labels = labels if labels is not None else [str(i + 1) for i in range(len(self.values))]

    @property
    def size(self) -> int:
        return self.values.shape[0]

    def dissimilarities(self) -> np.ndarray:
        """
        Matrix oriented so that smaller means closer, with a zero diagonal.
        """
        oriented = -self.values if self.is_similarity else self.values.copy()
        np.fill_diagonal(oriented, 0.0)
        return oriented

    def transform(self,
                  absolute: bool = False,
                  change_sign: bool = False,
                  rescale: bool = False) -> 'ProximityMatrix':
        """
        Apply measure transformations in the order absolute, sign, rescale.

        Changing sign turns a dissimilarity into a similarity and back.
        Rescaling maps off-diagonal values onto 0..1; a constant matrix
        rescales to all zeros.

        Returns:
            New ProximityMatrix
        """
        values = self.values.copy()
        is_similarity = self.is_similarity

        if absolute:
            values = np.abs(values)
        if change_sign:
            values = -values
            is_similarity = not is_similarity
        if rescale and self.size > 1:
            off = ~np.eye(self.size, dtype=bool)
            low = values[off].min()
            spread = values[off].max() - low
            values = (values - low) / spread if spread > 0 else np.zeros_like(values)
            np.fill_diagonal(values, 1.0 if is_similarity else 0.0)

        return ProximityMatrix(values, is_similarity, self.measure, self.labels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'measure': self.measure,
            'is_similarity': self.is_similarity,
            'labels': list(self.labels),
            'values': self.values.tolist()
        }

    def __repr__(self) -> str:
        kind = 'similarity' if self.is_similarity else 'dissimilarity'
        return f"ProximityMatrix(n={self.size}, measure={self.measure}, {kind})"


def proximity_matrix(values: np.ndarray,
                     measure: Optional[MeasureSpec] = None,
                     labels: Optional[List[str]] = None) -> ProximityMatrix:
    """
    Compute the full proximity matrix between cases.

    Complete interval data goes through scipy's pdist; anything else is
    compared pair by pair so that missing components are dropped per pair.

    Args:
        values: Cases x variables
        measure: Measure selection
        labels: Optional case labels

    Returns:
        ProximityMatrix
    """
    measure = measure or MeasureSpec()
    data = np.asarray(values, dtype=float)
    if data.ndim == 1:
        data = data.reshape(-1, 1)
    n = data.shape[0]
    if n == 0:
        raise ConfigurationError("empty dataset")
    if data.shape[1] == 0:
        raise ConfigurationError("no variables specified")

    complete = not np.isnan(data).any()
    if n < 2:
        pairs = np.zeros(0)
    elif complete and measure.name in _PDIST_METRICS:
        with np.errstate(invalid='ignore', divide='ignore'):
            pairs = spd.pdist(data, metric=_PDIST_METRICS[measure.name])
        # zero-variance / zero-norm rows come back as NaN: treat as uncorrelated
        pairs = np.nan_to_num(pairs, nan=1.0)
    elif complete and measure.name in ('MINKOWSKI', 'POWER'):
        pairs = spd.pdist(data, metric='minkowski', p=measure.power)
        if measure.name == 'POWER':
            pairs = pairs ** (measure.power / measure.root)
    else:
        pairs = np.asarray(map_rest(lambda a, b: distance(a, b, measure), list(data)), dtype=float)

    if measure.is_similarity:
        diagonal = [distance(row, row, measure) for row in data]
        matrix = symmetric_from_pairs(n, pairs)
        np.fill_diagonal(matrix, diagonal)
    else:
        matrix = symmetric_from_pairs(n, pairs)

    logger.debug(f"Computed {measure.name} proximities for {n} cases")
    return ProximityMatrix(matrix, measure.is_similarity, measure.name, labels)


def transform_measures(proximity: ProximityMatrix,
                       absolute: bool = False,
                       change_sign: bool = False,
                       rescale: bool = False) -> ProximityMatrix:
    """Functional form of ProximityMatrix.transform."""
    return proximity.transform(absolute=absolute, change_sign=change_sign, rescale=rescale)
