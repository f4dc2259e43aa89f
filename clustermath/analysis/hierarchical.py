"""
Hierarchical cluster analysis over a CaseMatrix.

Each output (proximity matrix, schedule, dendrogram, icicle plot,
cluster membership) is computed separately. A failure in one is logged
and recorded in the result's Diagnostics; the others still complete.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from clustermath.errors import ClusteringError, ConfigurationError
from clustermath.math.agglomeration import AgglomerationSchedule, agglomerate
from clustermath.math.case_matrix import CaseMatrix
from clustermath.math.dendrogram import Dendrogram, DendrogramBuilder
from clustermath.math.distance import ProximityMatrix, proximity_matrix, transform_measures, transform_values
from clustermath.math.icicle import IciclePlot, IciclePlotBuilder, cluster_membership
from clustermath.math.options import HierarchicalOptions
from clustermath.utils.diagnostics import Diagnostics

logger = logging.getLogger(__name__)

OUTPUTS = ('proximity', 'schedule', 'dendrogram', 'icicle', 'membership')


class HierarchicalResult:
    """
    Outputs of a hierarchical analysis; any of them may be None if it
    was not requested or failed.
    """

    def __init__(self, labels: List[str]):
        self.labels = labels
        self.proximity: Optional[ProximityMatrix] = None
        self.schedule: Optional[AgglomerationSchedule] = None
        self.dendrogram: Optional[Dendrogram] = None
        self.icicle: Optional[IciclePlot] = None
        self.membership: Dict[int, List[int]] = {}
        self.diagnostics = Diagnostics()

    def get_summary(self) -> Dict[str, Any]:
        return {
            'n_cases': len(self.labels),
            'stages': len(self.schedule) if self.schedule is not None else 0,
            'completed': list(self.diagnostics.completed),
            'errors': dict(self.diagnostics.errors)
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'labels': list(self.labels),
            'proximity': self.proximity.to_dict() if self.proximity is not None else None,
            'schedule': self.schedule.to_dict() if self.schedule is not None else None,
            'dendrogram': self.dendrogram.to_dict() if self.dendrogram is not None else None,
            'icicle': self.icicle.to_dict() if self.icicle is not None else None,
            'membership': {str(k): v for k, v in self.membership.items()},
            'diagnostics': self.diagnostics.to_dict()
        }


class HierarchicalAnalysis:
    """
    Runs a hierarchical cluster analysis with the given options.
    """

    def __init__(self, options: Optional[HierarchicalOptions] = None):
        """
        Args:
            options: Analysis options (defaults: average linkage between
                groups, squared Euclidean distance)
        """
        self.options = options or HierarchicalOptions()

    def _values(self, cases: CaseMatrix, diagnostics: Diagnostics) -> np.ndarray:
        if not cases.continuous_names:
            raise ConfigurationError("no variables specified")
        if cases.categorical_names:
            diagnostics.warn(
                f"categorical variables ignored: {', '.join(cases.categorical_names)}")
        values = cases.continuous_values()
        opts = self.options
        return transform_values(values, opts.standardize, opts.standardize_by)

    def _guarded(self,
                 output: str,
                 diagnostics: Diagnostics,
                 compute: Callable[[], Any],
                 record: bool = True) -> Any:
        try:
            value = compute()
        except ClusteringError as e:
            logger.error(f"Error computing {output}: {e}")
            diagnostics.error(output, str(e))
            return None
        if record:
            diagnostics.complete(output)
        return value

    def _compute_proximity(self, values: np.ndarray, labels: List[str]) -> ProximityMatrix:
        opts = self.options
        proximity = proximity_matrix(values, opts.measure, labels)
        return transform_measures(proximity, opts.absolute_values, opts.change_sign, opts.rescale)

    def _compute_schedule(self, proximity: Optional[ProximityMatrix]) -> AgglomerationSchedule:
        if proximity is None:
            raise ConfigurationError("proximity matrix unavailable")
        return agglomerate(proximity, self.options.method)

    @staticmethod
    def _require(schedule: Optional[AgglomerationSchedule]) -> AgglomerationSchedule:
        if schedule is None:
            raise ConfigurationError("agglomeration schedule unavailable")
        return schedule

    def run(self, cases: CaseMatrix, outputs: Optional[Iterable[str]] = None) -> HierarchicalResult:
        """
        Compute the requested outputs.

        Args:
            cases: Case data; only continuous variables are used
            outputs: Names from OUTPUTS, all by default

        Returns:
            HierarchicalResult
        """
        start_time = time.time()
        requested = set(outputs) if outputs is not None else set(OUTPUTS)
        unknown = requested - set(OUTPUTS)
        if unknown:
            raise ConfigurationError(f"unknown outputs: {', '.join(sorted(unknown))}")

        labels = cases.labels()
        result = HierarchicalResult(labels)
        diagnostics = result.diagnostics

        try:
            values = self._values(cases, diagnostics)
        except ClusteringError as e:
            logger.error(f"Error preparing case values: {e}")
            for output in sorted(requested):
                diagnostics.error(output, str(e))
            return result

        proximity = self._guarded('proximity', diagnostics,
                                  lambda: self._compute_proximity(values, labels),
                                  record='proximity' in requested)
        if 'proximity' in requested:
            result.proximity = proximity

        if requested & {'schedule', 'dendrogram', 'icicle', 'membership'}:
            result.schedule = self._guarded('schedule', diagnostics,
                                            lambda: self._compute_schedule(proximity),
                                            record='schedule' in requested)

        if 'dendrogram' in requested:
            result.dendrogram = self._guarded(
                'dendrogram', diagnostics,
                lambda: DendrogramBuilder(labels).build(self._require(result.schedule)))

        if 'icicle' in requested:
            order = result.dendrogram.leaf_order if result.dendrogram is not None else None
            result.icicle = self._guarded(
                'icicle', diagnostics,
                lambda: IciclePlotBuilder(self.options.display, labels, order).build(
                    self._require(result.schedule)))

        if 'membership' in requested:
            membership = self._guarded(
                'membership', diagnostics,
                lambda: cluster_membership(self._require(result.schedule), self.options.membership))
            result.membership = membership or {}

        if 'schedule' not in requested:
            result.schedule = None

        logger.info(f"Hierarchical analysis of {len(labels)} cases finished in "
                    f"{time.time() - start_time:.2f}s ({len(diagnostics.errors)} failed outputs)")
        return result


def run_hierarchical(cases: CaseMatrix,
                     options: Optional[HierarchicalOptions] = None,
                     outputs: Optional[Iterable[str]] = None) -> HierarchicalResult:
    """Convenience wrapper around HierarchicalAnalysis."""
    return HierarchicalAnalysis(options).run(cases, outputs)
