"""
Utility helpers for clustermath.
"""

from clustermath.utils.diagnostics import Diagnostics
