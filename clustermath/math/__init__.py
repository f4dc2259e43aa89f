"""
Core clustering math: proximities, agglomeration, dendrograms, icicle
plots, CF-trees and two-step clustering.
"""

from clustermath.math.agglomeration import AgglomerationEngine, AgglomerationSchedule, ClusterState
from clustermath.math.case_matrix import CaseMatrix, CategoryValue
from clustermath.math.cf_tree import CFEntry, CFTree, build_cf_tree
from clustermath.math.dendrogram import Dendrogram, DendrogramBuilder
from clustermath.math.distance import MeasureSpec, ProximityMatrix, distance, proximity_matrix
from clustermath.math.icicle import IciclePlot, IciclePlotBuilder
from clustermath.math.options import HierarchicalOptions, LinkageMethod, TwoStepOptions
from clustermath.math.twostep import TwoStepClusterer, TwoStepResult, select_k
