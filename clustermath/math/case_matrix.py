"""
Case matrix for clustering input.

This module provides the boundary object handed to the clustering core:
a rectangular set of cases with named continuous and categorical
variables, backed by pandas DataFrames.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from clustermath.errors import ConfigurationError


class CategoryKind(Enum):
    NUMBER = 'number'
    TEXT = 'text'
    BOOLEAN = 'boolean'
    NULL = 'null'


@dataclass(frozen=True)
class CategoryValue:
    """
    A single categorical cell.
    
    The kind is fixed at construction; consumers branch on it instead of
    inspecting Python types.
    """
    
    kind: CategoryKind
    value: Any = None
    
    @classmethod
    def of(cls, raw: Any) -> 'CategoryValue':
        """
        Classify a raw cell value.
        
        Args:
            raw: Cell value as read from the source data
            
        Returns:
            CategoryValue of the matching kind
        """
        if raw is None:
            return cls(CategoryKind.NULL)
        if isinstance(raw, (bool, np.bool_)):
            return cls(CategoryKind.BOOLEAN, bool(raw))
        if isinstance(raw, (int, float, np.integer, np.floating)):
            if isinstance(raw, (float, np.floating)) and math.isnan(raw):
                return cls(CategoryKind.NULL)
            return cls(CategoryKind.NUMBER, float(raw))
        if isinstance(raw, str):
            if not raw.strip():
                return cls(CategoryKind.NULL)
            return cls(CategoryKind.TEXT, raw)
        if raw is pd.NA or raw is pd.NaT:
            return cls(CategoryKind.NULL)
        return cls(CategoryKind.TEXT, str(raw))
    
    @property
    def is_null(self) -> bool:
        return self.kind is CategoryKind.NULL
    
    def key(self) -> Optional[str]:
        """
        Category key used in frequency tables, None for missing values.
        """
        if self.kind is CategoryKind.NUMBER:
            return f"{self.value:g}"
        if self.kind is CategoryKind.TEXT:
            return self.value
        if self.kind is CategoryKind.BOOLEAN:
            return 'true' if self.value else 'false'
        if self.kind is CategoryKind.NULL:
            return None
        raise ValueError(f"Unhandled category kind: {self.kind}")


@dataclass(frozen=True)
class Case:
    """A single immutable case."""
    
    index: int
    continuous: Tuple[float, ...]
    categorical: Tuple[CategoryValue, ...]
    label: Optional[str] = None


class CaseMatrix:
    """
    Cases x variables, split into continuous and categorical parts.
    """
    
    def __init__(self,
                 continuous: Optional[pd.DataFrame] = None,
                 categorical: Optional[pd.DataFrame] = None,
                 labels: Optional[Sequence[Any]] = None):
        """
        Initialize a CaseMatrix.
        
        Args:
            continuous: Numeric frame (cases x continuous variables)
            categorical: Frame of raw categorical values, same row count
            labels: Optional display labels, one per case
        """
        if continuous is None and categorical is None:
            raise ConfigurationError("no variables specified")
        
        n_cont = 0 if continuous is None else len(continuous)
        n_cat = 0 if categorical is None else len(categorical)
        n_cases = max(n_cont, n_cat)
        
        if continuous is not None and categorical is not None and n_cont != n_cat:
            raise ConfigurationError(
                f"continuous and categorical data disagree on case count ({n_cont} vs {n_cat})")
        
        self._continuous = (pd.DataFrame(index=range(n_cases))
                            if continuous is None
                            else continuous.reset_index(drop=True).astype(float))
        self._categorical = (pd.DataFrame(index=range(n_cases))
                             if categorical is None
                             else categorical.reset_index(drop=True))
        
        if self._continuous.shape[1] == 0 and self._categorical.shape[1] == 0:
            raise ConfigurationError("no variables specified")
        
        if labels is None:
            self._labels = [str(i + 1) for i in range(n_cases)]
        else:
            if len(labels) != n_cases:
                raise ConfigurationError(
                    f"expected {n_cases} case labels, got {len(labels)}")
            self._labels = [str(label) for label in labels]
    
    @classmethod
    def from_frame(cls,
                   df: pd.DataFrame,
                   continuous: Optional[List[str]] = None,
                   categorical: Optional[List[str]] = None,
                   label: Optional[str] = None) -> 'CaseMatrix':
        """
        Build a CaseMatrix from selected columns of a DataFrame.
        
        Args:
            df: Source frame
            continuous: Names of continuous columns
            categorical: Names of categorical columns
            label: Optional name of a column holding case labels
            
        Returns:
            CaseMatrix
        """
        continuous = list(continuous or [])
        categorical = list(categorical or [])
        
        if not continuous and not categorical:
            raise ConfigurationError("no variables specified")
        
        missing = [name for name in continuous + categorical if name not in df.columns]
        if missing:
            raise ConfigurationError(f"unknown variables: {', '.join(map(str, missing))}")
        
        labels = df[label].tolist() if label is not None else None
        return cls(
            continuous=df[continuous] if continuous else None,
            categorical=df[categorical] if categorical else None,
            labels=labels
        )
    
    @classmethod
    def from_arrays(cls,
                    continuous: Optional[Union[np.ndarray, List[List[float]]]] = None,
                    categorical: Optional[List[List[Any]]] = None,
                    continuous_names: Optional[List[str]] = None,
                    categorical_names: Optional[List[str]] = None,
                    labels: Optional[Sequence[Any]] = None) -> 'CaseMatrix':
        """
        Build a CaseMatrix from plain nested lists or arrays.
        """
        cont_frame = None
        cat_frame = None
        
        if continuous is not None and len(continuous) > 0:
            values = np.asarray(continuous, dtype=float)
            if values.ndim == 1:
                values = values.reshape(-1, 1)
            names = continuous_names or [f"V{i + 1}" for i in range(values.shape[1])]
            cont_frame = pd.DataFrame(values, columns=names)
        
        if categorical is not None and len(categorical) > 0:
            width = len(categorical[0])
            names = categorical_names or [f"C{i + 1}" for i in range(width)]
            cat_frame = pd.DataFrame(list(categorical), columns=names, dtype=object)
        
        if cont_frame is None and cat_frame is None:
            raise ConfigurationError("empty dataset")
        
        return cls(cont_frame, cat_frame, labels)
    
    @property
    def n_cases(self) -> int:
        return len(self._labels)
    
    @property
    def continuous_names(self) -> List[str]:
        return [str(c) for c in self._continuous.columns]
    
    @property
    def categorical_names(self) -> List[str]:
        return [str(c) for c in self._categorical.columns]
    
    def labels(self) -> List[str]:
        """Return the case labels in case order."""
        return list(self._labels)
    
    def continuous_values(self) -> np.ndarray:
        """Return the continuous part as a float array (cases x variables)."""
        return self._continuous.to_numpy(dtype=float, copy=True)
    
    def categorical_values(self) -> List[List[CategoryValue]]:
        """Return the categorical part as tagged values."""
        return [[CategoryValue.of(raw) for raw in row]
                for row in self._categorical.itertuples(index=False, name=None)]
    
    def categorical_keys(self) -> List[List[Optional[str]]]:
        """Return the categorical part as frequency-table keys."""
        return [[value.key() for value in row] for row in self.categorical_values()]
    
    def case(self, index: int) -> Case:
        """
        Get a single case.
        
        Args:
            index: Case position
            
        Returns:
            Case
        """
        if index < 0 or index >= self.n_cases:
            raise IndexError(f"case index {index} out of range")
        
        continuous = tuple(float(v) for v in self._continuous.iloc[index]) if self._continuous.shape[1] else ()
        categorical = (tuple(CategoryValue.of(v) for v in self._categorical.iloc[index])
                       if self._categorical.shape[1] else ())
        return Case(index, continuous, categorical, self._labels[index])
    
    def variable_subset(self,
                        continuous: Optional[List[str]] = None,
                        categorical: Optional[List[str]] = None) -> 'CaseMatrix':
        """
        Keep only the named variables.
        """
        continuous = list(continuous or [])
        categorical = list(categorical or [])
        if not continuous and not categorical:
            raise ConfigurationError("no variables specified")

        return CaseMatrix(
            self._continuous[continuous] if continuous else None,
            self._categorical[categorical] if categorical else None,
            self._labels
        )
    
    def complete_cases(self) -> 'CaseMatrix':
        """
        Drop every case with a missing continuous or categorical value.
        
        The clustering core assumes complete rows; this is the list-wise
        policy for callers that want it.
        """
        keep = ~self._continuous.isna().any(axis=1)
        if self._categorical.shape[1]:
            null_rows = [any(v.is_null for v in row) for row in self.categorical_values()]
            keep &= ~pd.Series(null_rows, index=keep.index)
        
        if not keep.any():
            raise ConfigurationError("empty dataset")
        
        labels = [label for label, k in zip(self._labels, keep) if k]
        return CaseMatrix(
            self._continuous[keep] if self._continuous.shape[1] else None,
            self._categorical[keep] if self._categorical.shape[1] else None,
            labels
        )
    
    def __len__(self) -> int:
        return self.n_cases
    
    def __repr__(self) -> str:
        return (f"CaseMatrix(cases={self.n_cases}, continuous={self.continuous_names}, "
                f"categorical={self.categorical_names})")
