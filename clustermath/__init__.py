"""
Clustermath package for hierarchical and two-step cluster analysis.

This package provides proximity measures, agglomerative clustering with
dendrogram and icicle-plot output, and CF-tree based two-step clustering,
plus the configuration, CLI and HTTP layers around them.
"""

__version__ = '0.1.0'

from clustermath.components.config import Config, ConfigManager
from clustermath.analysis import HierarchicalAnalysis, TwoStepAnalysis
