"""
Analyses over case data.

This module runs complete hierarchical and two-step cluster analyses,
isolating failures per requested output.
"""

from clustermath.analysis.hierarchical import HierarchicalAnalysis, HierarchicalResult, run_hierarchical
from clustermath.analysis.twostep import TwoStepAnalysis, TwoStepAnalysisResult, run_twostep
