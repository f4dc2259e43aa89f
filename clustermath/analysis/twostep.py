"""
Two-step cluster analysis over a CaseMatrix.

Runs TwoStepClusterer on the complete cases and derives the summary
tables: cluster distribution, cluster profiles and the model summary
with its silhouette coefficient.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import silhouette_score

from clustermath.errors import ClusteringError
from clustermath.math.case_matrix import CaseMatrix
from clustermath.math.distance import StandardizeMethod, transform_values
from clustermath.math.options import TwoStepOptions
from clustermath.math.twostep import TwoStepClusterer, TwoStepResult
from clustermath.utils.diagnostics import Diagnostics
from clustermath.utils.general import percent

logger = logging.getLogger(__name__)

# Above this many cases the silhouette is estimated on a random sample
SILHOUETTE_SAMPLE = 5000


def cluster_distribution(labels: np.ndarray, k: int, n_total: int) -> Dict[str, Any]:
    """
    Cluster sizes with percentages of the clustered and of all cases.

    Args:
        labels: Cluster (1..k) per clustered case
        k: Number of clusters
        n_total: Number of cases before incomplete ones were excluded

    Returns:
        Dictionary with one row per cluster plus totals
    """
    n_combined = len(labels)
    counts = np.bincount(np.asarray(labels, dtype=int), minlength=k + 1)[1:]
    clusters = [
        {
            'cluster': c + 1,
            'n': int(count),
            'percent_of_combined': percent(count, n_combined),
            'percent_of_total': percent(count, n_total)
        }
        for c, count in enumerate(counts)
    ]
    sizes = [row['n'] for row in clusters if row['n'] > 0]
    return {
        'clusters': clusters,
        'combined': n_combined,
        'excluded': n_total - n_combined,
        'total': n_total,
        'ratio_of_sizes': (max(sizes) / min(sizes)) if sizes else None
    }


def cluster_profiles(cases: CaseMatrix, labels: np.ndarray, k: int) -> Dict[str, Any]:
    """
    Per-cluster centroids of continuous variables and category
    frequencies of categorical variables.

    Args:
        cases: The clustered (complete) cases
        labels: Cluster per case
        k: Number of clusters

    Returns:
        Dictionary with 'centroids' and 'frequencies'
    """
    centroids: Dict[str, Dict[str, Any]] = {}
    if cases.continuous_names:
        frame = pd.DataFrame(cases.continuous_values(), columns=cases.continuous_names)
        frame['cluster'] = labels
        grouped = frame.groupby('cluster')
        means = grouped.mean()
        stds = grouped.std(ddof=1)
        for name in cases.continuous_names:
            centroids[name] = {
                'mean': {int(c): float(means.at[c, name]) for c in means.index},
                'std': {int(c): (None if pd.isna(stds.at[c, name]) else float(stds.at[c, name]))
                        for c in stds.index},
                'combined_mean': float(frame[name].mean()),
                'combined_std': float(frame[name].std(ddof=1)) if len(frame) > 1 else None
            }

    frequencies: Dict[str, Dict[str, Any]] = {}
    if cases.categorical_names:
        keys = cases.categorical_keys()
        sizes = np.bincount(np.asarray(labels, dtype=int), minlength=k + 1)
        for v, name in enumerate(cases.categorical_names):
            table: Dict[str, Dict[int, Dict[str, float]]] = {}
            for row, label in zip(keys, labels):
                cell = table.setdefault(row[v], {}).setdefault(int(label), {'n': 0})
                cell['n'] += 1
            for per_cluster in table.values():
                for c, cell in per_cluster.items():
                    cell['percent'] = percent(cell['n'], sizes[c])
            frequencies[name] = {str(category): {str(c): cell for c, cell in per_cluster.items()}
                                 for category, per_cluster in table.items()}

    return {'centroids': centroids, 'frequencies': frequencies}


def silhouette(cases: CaseMatrix, labels: np.ndarray, seed: Optional[int] = None) -> Optional[float]:
    """
    Silhouette coefficient of the solution.

    Continuous variables are z-scored and categorical variables one-hot
    encoded. Returns None when the score is undefined (a single cluster,
    or as many clusters as cases).
    """
    n_labels = len(set(int(label) for label in labels))
    if n_labels < 2 or n_labels >= len(labels):
        return None

    parts = []
    if cases.continuous_names:
        parts.append(transform_values(cases.continuous_values(), StandardizeMethod.Z_SCORES))
    if cases.categorical_names:
        frame = pd.DataFrame(cases.categorical_keys(), columns=cases.categorical_names, dtype=object)
        parts.append(pd.get_dummies(frame).to_numpy(dtype=float))
    features = np.hstack(parts)

    sample = SILHOUETTE_SAMPLE if len(labels) > SILHOUETTE_SAMPLE else None
    return float(silhouette_score(features, labels, sample_size=sample, random_state=seed))


class TwoStepAnalysisResult:
    """Two-step model plus its summary tables."""

    def __init__(self, n_total: int):
        self.n_total = n_total
        self.model: Optional[TwoStepResult] = None
        self.case_labels: List[Optional[int]] = [None] * n_total
        self.distribution: Optional[Dict[str, Any]] = None
        self.profiles: Optional[Dict[str, Any]] = None
        self.silhouette: Optional[float] = None
        self.diagnostics = Diagnostics()

    def get_summary(self) -> Dict[str, Any]:
        return {
            'k': self.model.k if self.model is not None else None,
            'cases': self.n_total,
            'clustered': self.distribution['combined'] if self.distribution else 0,
            'silhouette': self.silhouette,
            'errors': dict(self.diagnostics.errors)
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.get_summary(),
            'case_labels': list(self.case_labels),
            'model': self.model.to_dict() if self.model is not None else None,
            'distribution': self.distribution,
            'profiles': self.profiles,
            'diagnostics': self.diagnostics.to_dict()
        }


class TwoStepAnalysis:
    """
    Runs a two-step cluster analysis with the given options.
    """

    def __init__(self, options: Optional[TwoStepOptions] = None):
        self.options = options or TwoStepOptions()

    def run(self, cases: CaseMatrix) -> TwoStepAnalysisResult:
        """
        Cluster the complete cases and build the summary tables.

        Cases with any missing value are excluded and keep a None label.

        Args:
            cases: Case data

        Returns:
            TwoStepAnalysisResult
        """
        start_time = time.time()
        result = TwoStepAnalysisResult(cases.n_cases)
        diagnostics = result.diagnostics

        try:
            complete = cases.complete_cases()
            keep = list(range(cases.n_cases))
            if complete.n_cases < cases.n_cases:
                keep = _complete_positions(cases)
                diagnostics.warn(f"{cases.n_cases - complete.n_cases} cases with missing values excluded")

            clusterer = TwoStepClusterer(self.options)
            model = clusterer.fit(
                complete.continuous_values() if complete.continuous_names else None,
                complete.categorical_keys() if complete.categorical_names else None
            )
        except ClusteringError as e:
            logger.error(f"Error computing two-step model: {e}")
            diagnostics.error('model', str(e))
            return result

        result.model = model
        diagnostics.merge(model.diagnostics)
        diagnostics.complete('model')
        for position, label in zip(keep, model.labels):
            result.case_labels[position] = int(label)

        result.distribution = cluster_distribution(model.labels, model.k, cases.n_cases)
        diagnostics.complete('distribution')
        result.profiles = cluster_profiles(complete, model.labels, model.k)
        diagnostics.complete('profiles')

        try:
            result.silhouette = silhouette(complete, model.labels, self.options.seed)
            diagnostics.complete('silhouette')
        except ValueError as e:
            logger.warning(f"Silhouette coefficient unavailable: {e}")
            diagnostics.warn(f"silhouette coefficient unavailable: {e}")

        logger.info(f"Two-step analysis finished in {time.time() - start_time:.2f}s")
        return result


def _complete_positions(cases: CaseMatrix) -> List[int]:
    positions = []
    continuous = cases.continuous_values()
    categorical = cases.categorical_values() if cases.categorical_names else None
    for i in range(cases.n_cases):
        if continuous.shape[1] and np.isnan(continuous[i]).any():
            continue
        if categorical is not None and any(v.is_null for v in categorical[i]):
            continue
        positions.append(i)
    return positions


def run_twostep(cases: CaseMatrix, options: Optional[TwoStepOptions] = None) -> TwoStepAnalysisResult:
    """Convenience wrapper around TwoStepAnalysis."""
    return TwoStepAnalysis(options).run(cases)
