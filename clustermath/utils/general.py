"""
General utility functions for the clustermath package.
"""

import math
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

T = TypeVar('T')
U = TypeVar('U')


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Divide, returning a fixed value when the denominator is zero.
    
    Args:
        numerator: Dividend
        denominator: Divisor
        default: Value returned when the divisor is zero
        
    Returns:
        numerator / denominator, or default
    """
    if denominator == 0:
        return default
    return numerator / denominator


def upper_triangle_pairs(n: int) -> Iterator[Tuple[int, int]]:
    """
    Iterate (i, j) with i < j, i ascending then j ascending.
    
    This is the canonical scan order used wherever a "first found" tie
    break matters.
    
    Args:
        n: Number of items
        
    Yields:
        Index pairs
    """
    for i in range(n):
        for j in range(i + 1, n):
            yield i, j


def map_rest(f: Callable[[T, T], U], coll: Sequence[T]) -> List[U]:
    """
    Apply a function to each element and all remaining elements.
    
    For each element in coll, apply function f to that element and each 
    element that comes after it.
    
    Args:
        f: Function taking two arguments
        coll: Collection to process
        
    Returns:
        List of results in upper-triangle order
    """
    return [f(coll[i], coll[j]) for i, j in upper_triangle_pairs(len(coll))]


def symmetric_from_pairs(n: int, values: Sequence[float], diagonal: float = 0.0) -> np.ndarray:
    """
    Build a symmetric matrix from upper-triangle values.
    
    Args:
        n: Matrix size
        values: Values in upper_triangle_pairs order
        diagonal: Value placed on the diagonal
        
    Returns:
        n x n symmetric matrix
    """
    matrix = np.full((n, n), diagonal, dtype=float)
    iu = np.triu_indices(n, k=1)
    matrix[iu] = values
    matrix[(iu[1], iu[0])] = values
    return matrix


def to_int(value: Any) -> Optional[int]:
    """
    Convert a value to an integer.

    Args:
        value: Value to convert

    Returns:
        Integer value, or None if conversion failed
    """
    if value is None:
        return None

    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def to_bool(value: Any) -> Optional[bool]:
    """
    Convert a value to a boolean.

    Args:
        value: Value to convert

    Returns:
        Boolean value, or None if conversion failed
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, (int, float)):
        return bool(value)

    if isinstance(value, str):
        value = value.lower().strip()
        if value in ('true', 'yes', 'y', '1', 't', 'on'):
            return True
        if value in ('false', 'no', 'n', '0', 'f', 'off'):
            return False

    return None


def percent(part: float, whole: float) -> float:
    """Percentage of part in whole, 0 when whole is 0."""
    return 100.0 * safe_divide(part, whole)


def to_jsonable(value: Any) -> Any:
    """
    Recursively convert numpy scalars and arrays to Python values and
    non-finite floats to None.
    """
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return to_jsonable(value.tolist())
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value
