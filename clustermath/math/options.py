"""
Typed options for hierarchical and two-step clustering.

Configuration sections (plain dicts with hyphenated keys, as held by
Config) are turned into these objects before any computation starts, so
bad names fail early with a ConfigurationError.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from clustermath.errors import ConfigurationError
from clustermath.math.distance import MeasureSpec, StandardizeMethod
from clustermath.utils.general import to_bool


def _normalize(name: str) -> str:
    return re.sub(r'[^a-z0-9]', '', str(name).lower())


def _flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    flag = to_bool(value)
    if flag is None:
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return flag


class LinkageMethod(Enum):
    SINGLE = 'single'
    COMPLETE = 'complete'
    AVERAGE_BETWEEN = 'average-between'
    AVERAGE_WITHIN = 'average-within'
    CENTROID = 'centroid'
    MEDIAN = 'median'
    WARD = 'ward'
    
    @classmethod
    def parse(cls, name: Any) -> 'LinkageMethod':
        """
        Resolve a linkage method from its name or a common alias.
        
        Args:
            name: e.g. 'average-between', 'AverageBetweenGroups', 'WARD'
            
        Returns:
            LinkageMethod
        """
        if isinstance(name, cls):
            return name
        key = _normalize(name)
        if key in _LINKAGE_ALIASES:
            return _LINKAGE_ALIASES[key]
        raise ConfigurationError(f"unknown linkage method: {name}")
    
    @property
    def monotone(self) -> bool:
        """Whether merge heights are guaranteed non-decreasing."""
        return self not in (LinkageMethod.CENTROID, LinkageMethod.MEDIAN)


_LINKAGE_ALIASES = {
    'single': LinkageMethod.SINGLE,
    'singlelinkage': LinkageMethod.SINGLE,
    'nearestneighbor': LinkageMethod.SINGLE,
    'complete': LinkageMethod.COMPLETE,
    'completelinkage': LinkageMethod.COMPLETE,
    'furthestneighbor': LinkageMethod.COMPLETE,
    'averagebetween': LinkageMethod.AVERAGE_BETWEEN,
    'averagebetweengroups': LinkageMethod.AVERAGE_BETWEEN,
    'baverage': LinkageMethod.AVERAGE_BETWEEN,
    'average': LinkageMethod.AVERAGE_BETWEEN,
    'averagewithin': LinkageMethod.AVERAGE_WITHIN,
    'averagewithingroups': LinkageMethod.AVERAGE_WITHIN,
    'waverage': LinkageMethod.AVERAGE_WITHIN,
    'centroid': LinkageMethod.CENTROID,
    'centroidclustering': LinkageMethod.CENTROID,
    'median': LinkageMethod.MEDIAN,
    'medianclustering': LinkageMethod.MEDIAN,
    'ward': LinkageMethod.WARD,
    'wards': LinkageMethod.WARD,
    'wardsmethod': LinkageMethod.WARD,
}


class DisplayMode(Enum):
    ALL = 'all'
    RANGE = 'range'
    SINGLE = 'single'
    NONE = 'none'


@dataclass
class DisplayWindow:
    """
    Which cluster counts k an icicle plot (or membership table) exposes.
    """
    
    mode: DisplayMode = DisplayMode.ALL
    start: int = 1
    stop: Optional[int] = None
    step: int = 1
    k: Optional[int] = None
    
    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DisplayWindow':
        data = data or {}
        try:
            mode = DisplayMode(str(data.get('mode', 'all')).lower())
        except ValueError:
            raise ConfigurationError(f"unknown display mode: {data.get('mode')}")
        return cls(
            mode=mode,
            start=int(data.get('start', 1) or 1),
            stop=None if data.get('stop') is None else int(data['stop']),
            step=int(data.get('step', 1) or 1),
            k=None if data.get('k') is None else int(data['k'])
        )
    
    def ks(self, n: int) -> List[int]:
        """
        Cluster counts to display for n cases, in ascending order.
        
        Args:
            n: Number of cases
            
        Returns:
            List of k values within 1..n
        """
        if self.mode is DisplayMode.NONE:
            return []
        if self.mode is DisplayMode.ALL:
            return list(range(1, n + 1))
        if self.mode is DisplayMode.SINGLE:
            if self.k is None or self.k < 1 or self.k > n:
                raise ConfigurationError(f"cluster count {self.k} outside 1..{n}")
            return [self.k]
        
        stop = n if self.stop is None else min(self.stop, n)
        if self.start < 1 or self.step < 1 or stop < self.start:
            raise ConfigurationError(
                f"invalid display range start={self.start} stop={self.stop} step={self.step}")
        return list(range(self.start, stop + 1, self.step))


@dataclass
class MembershipRequest:
    """
    Which solutions to report per-case cluster membership for.
    """
    
    mode: str = 'none'
    k: Optional[int] = None
    min_k: Optional[int] = None
    max_k: Optional[int] = None
    
    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MembershipRequest':
        data = data or {}
        mode = str(data.get('mode', 'none')).lower()
        if mode not in ('none', 'single', 'range'):
            raise ConfigurationError(f"unknown membership mode: {mode}")
        return cls(
            mode=mode,
            k=data.get('k'),
            min_k=data.get('min-k'),
            max_k=data.get('max-k')
        )
    
    def ks(self, n: int) -> List[int]:
        if self.mode == 'none':
            return []
        if self.mode == 'single':
            if self.k is None or not 1 <= int(self.k) <= n:
                raise ConfigurationError(f"cluster count {self.k} outside 1..{n}")
            return [int(self.k)]
        if self.min_k is None or self.max_k is None:
            raise ConfigurationError("membership range needs min-k and max-k")
        lo, hi = int(self.min_k), int(self.max_k)
        if lo < 1 or hi < lo:
            raise ConfigurationError(f"invalid membership range {lo}..{hi}")
        return list(range(lo, min(hi, n) + 1))


@dataclass
class HierarchicalOptions:
    """Options for a hierarchical cluster analysis."""
    
    method: LinkageMethod = LinkageMethod.AVERAGE_BETWEEN
    measure: MeasureSpec = field(default_factory=MeasureSpec)
    standardize: StandardizeMethod = StandardizeMethod.NONE
    standardize_by: str = 'variable'
    absolute_values: bool = False
    change_sign: bool = False
    rescale: bool = False
    display: DisplayWindow = field(default_factory=DisplayWindow)
    membership: MembershipRequest = field(default_factory=MembershipRequest)
    
    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'HierarchicalOptions':
        """
        Build options from a 'hierarchical' configuration section.
        
        Args:
            data: Section dict with hyphenated keys
            
        Returns:
            HierarchicalOptions
        """
        data = data or {}
        transform = data.get('transform') or {}
        standardize_by = str(data.get('standardize-by', 'variable')).lower()
        if standardize_by not in ('variable', 'case'):
            raise ConfigurationError(f"standardize-by must be 'variable' or 'case', got {standardize_by}")
        
        return cls(
            method=LinkageMethod.parse(data.get('method', 'average-between')),
            measure=MeasureSpec.create(
                data.get('measure', 'SEUCLID'),
                power=data.get('power', 2),
                root=data.get('root', 2),
                present=data.get('present', 1),
                absent=data.get('absent', 0)
            ),
            standardize=StandardizeMethod.parse(data.get('standardize', 'none')),
            standardize_by=standardize_by,
            absolute_values=_flag(transform, 'absolute', False),
            change_sign=_flag(transform, 'change-sign', False),
            rescale=_flag(transform, 'rescale', False),
            display=DisplayWindow.from_dict(data.get('display')),
            membership=MembershipRequest.from_dict(data.get('membership'))
        )
    
    @classmethod
    def from_config(cls, config) -> 'HierarchicalOptions':
        return cls.from_dict(config.get('hierarchical', {}))


@dataclass
class TwoStepOptions:
    """Options for a two-step cluster analysis."""
    
    distance: str = 'log-likelihood'
    standardize: bool = True
    max_branch: int = 8
    max_depth: int = 3
    initial_threshold: float = 0.0
    noise: bool = False
    noise_threshold: float = 0.25
    seed: Optional[int] = 42
    cluster_mode: str = 'auto'
    fixed_k: int = 5
    max_k: int = 15
    criterion: str = 'bic'
    
    def __post_init__(self):
        if self.distance not in ('log-likelihood', 'euclidean'):
            raise ConfigurationError(f"unknown two-step distance: {self.distance}")
        if self.cluster_mode not in ('auto', 'fixed'):
            raise ConfigurationError(f"unknown cluster mode: {self.cluster_mode}")
        if self.criterion not in ('bic', 'aic'):
            raise ConfigurationError(f"unknown clustering criterion: {self.criterion}")
        if self.max_branch < 2 or self.max_depth < 1:
            raise ConfigurationError("max-branch must be >= 2 and max-depth >= 1")
        if not 0.0 <= self.noise_threshold <= 1.0:
            raise ConfigurationError("noise-threshold must be a fraction between 0 and 1")
        if self.fixed_k < 1 or self.max_k < 1:
            raise ConfigurationError("cluster counts must be positive")
    
    @property
    def use_euclidean(self) -> bool:
        return self.distance == 'euclidean'
    
    @property
    def capacity(self) -> int:
        """Maximum number of leaf entries a full CF-tree can hold."""
        return self.max_branch ** self.max_depth
    
    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TwoStepOptions':
        """
        Build options from a 'twostep' configuration section.
        """
        data = data or {}
        clusters = data.get('clusters') or {}
        seed = data.get('seed', 42)
        return cls(
            distance=str(data.get('distance', 'log-likelihood')).lower(),
            standardize=_flag(data, 'standardize', True),
            max_branch=int(data.get('max-branch', 8)),
            max_depth=int(data.get('max-depth', 3)),
            initial_threshold=float(data.get('initial-threshold', 0.0)),
            noise=_flag(data, 'noise', False),
            noise_threshold=float(data.get('noise-threshold', 0.25)),
            seed=None if seed is None else int(seed),
            cluster_mode=str(clusters.get('mode', 'auto')).lower(),
            fixed_k=int(clusters.get('fixed-k', 5)),
            max_k=int(clusters.get('max-k', 15)),
            criterion=str(clusters.get('criterion', 'bic')).lower()
        )
    
    @classmethod
    def from_config(cls, config) -> 'TwoStepOptions':
        return cls.from_dict(config.get('twostep', {}))
