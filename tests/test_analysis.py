"""
Tests for the hierarchical and two-step analysis layer.
"""

import pytest
import numpy as np
import pandas as pd
import sys
import os

# Add the parent directory to the path to import the module
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clustermath.analysis import HierarchicalAnalysis, TwoStepAnalysis, run_hierarchical, run_twostep
from clustermath.analysis.twostep import cluster_distribution, cluster_profiles, silhouette
from clustermath.errors import ConfigurationError
from clustermath.math.case_matrix import CaseMatrix
from clustermath.math.options import HierarchicalOptions, MembershipRequest, TwoStepOptions


def four_cases():
    return CaseMatrix.from_arrays(
        continuous=[[0.0, 0.0], [0.0, 1.0], [5.0, 5.0], [5.0, 6.0]],
        labels=['a', 'b', 'c', 'd']
    )


def blob_frame(n=20, seed=0):
    rng = np.random.RandomState(seed)
    return pd.DataFrame({
        'x': np.concatenate([rng.normal(0.0, 0.1, n), rng.normal(10.0, 0.1, n)]),
        'y': np.concatenate([rng.normal(0.0, 0.1, n), rng.normal(10.0, 0.1, n)]),
        'group': ['low'] * n + ['high'] * n
    })


class TestHierarchicalAnalysis:
    """Tests for the HierarchicalAnalysis class."""

    def test_all_outputs(self):
        """Every output is produced by default."""
        options = HierarchicalOptions(membership=MembershipRequest('single', k=2))
        result = HierarchicalAnalysis(options).run(four_cases())

        assert result.diagnostics.ok
        assert result.proximity is not None
        assert len(result.schedule) == 3
        assert result.dendrogram.root == 6
        assert result.dendrogram.node(0).label == 'a'
        assert result.icicle.levels[2] == [1, 1, 2, 2]
        assert result.membership == {2: [1, 1, 2, 2]}
        assert set(result.diagnostics.completed) == {
            'proximity', 'schedule', 'dendrogram', 'icicle', 'membership'}

    def test_selected_outputs(self):
        """Only requested outputs are returned."""
        result = run_hierarchical(four_cases(), outputs=['dendrogram'])

        assert result.dendrogram is not None
        assert result.proximity is None
        assert result.schedule is None
        assert result.icicle is None
        assert result.diagnostics.completed == ['dendrogram']

    def test_unknown_output(self):
        """Unknown output names are rejected up front."""
        with pytest.raises(ConfigurationError):
            run_hierarchical(four_cases(), outputs=['heatmap'])

    def test_failure_isolated(self):
        """A single case yields a proximity matrix but no schedule."""
        cases = CaseMatrix.from_arrays(continuous=[[1.0, 2.0]])
        result = run_hierarchical(cases)

        assert result.proximity is not None
        assert 'proximity' in result.diagnostics.completed
        assert 'at least two cases are required' in result.diagnostics.errors['schedule']
        assert 'dendrogram' in result.diagnostics.errors
        assert 'icicle' in result.diagnostics.errors
        assert not result.diagnostics.ok

    def test_categorical_only(self):
        """Without continuous variables every output fails."""
        cases = CaseMatrix.from_arrays(categorical=[['a'], ['b']])
        result = run_hierarchical(cases, outputs=['proximity', 'schedule'])

        assert result.diagnostics.errors == {
            'proximity': 'no variables specified',
            'schedule': 'no variables specified'
        }

    def test_categorical_ignored_with_warning(self):
        """Categorical variables are ignored with a warning."""
        cases = CaseMatrix.from_frame(blob_frame(5), ['x', 'y'], ['group'])
        result = run_hierarchical(cases, outputs=['schedule'])

        assert result.diagnostics.ok
        assert any('group' in w for w in result.diagnostics.warnings)

    def test_to_dict(self):
        """Serialized results carry every output and the diagnostics."""
        data = run_hierarchical(four_cases()).to_dict()
        assert data['labels'] == ['a', 'b', 'c', 'd']
        assert data['dendrogram']['root'] == 6
        assert data['diagnostics']['errors'] == {}
        assert run_hierarchical(four_cases()).get_summary()['stages'] == 3


class TestTwoStepSummaries:
    """Tests for the two-step summary tables."""

    def test_cluster_distribution(self):
        """Counts and percentages of combined and total cases."""
        distribution = cluster_distribution(np.array([1, 1, 1, 2]), 2, 5)

        assert [row['n'] for row in distribution['clusters']] == [3, 1]
        assert distribution['clusters'][0]['percent_of_combined'] == pytest.approx(75.0)
        assert distribution['clusters'][0]['percent_of_total'] == pytest.approx(60.0)
        assert distribution['excluded'] == 1
        assert distribution['ratio_of_sizes'] == pytest.approx(3.0)

    def test_cluster_profiles(self):
        """Per-cluster means and category frequencies."""
        cases = CaseMatrix.from_frame(blob_frame(5), ['x'], ['group'])
        labels = np.array([1] * 5 + [2] * 5)
        profiles = cluster_profiles(cases, labels, 2)

        assert profiles['centroids']['x']['mean'][1] == pytest.approx(0.0, abs=0.5)
        assert profiles['centroids']['x']['mean'][2] == pytest.approx(10.0, abs=0.5)
        assert profiles['frequencies']['group']['low']['1'] == {'n': 5, 'percent': 100.0}
        assert '2' not in profiles['frequencies']['group']['low']

    def test_silhouette(self):
        """Well-separated clusters score close to one; one cluster has no score."""
        cases = CaseMatrix.from_frame(blob_frame(10), ['x', 'y'])
        labels = np.array([1] * 10 + [2] * 10)
        assert silhouette(cases, labels) > 0.9
        assert silhouette(cases, np.ones(20, dtype=int)) is None


class TestTwoStepAnalysis:
    """Tests for the TwoStepAnalysis class."""

    def test_run(self):
        """Mixed data clusters into the two blobs."""
        cases = CaseMatrix.from_frame(blob_frame(), ['x', 'y'], ['group'])
        result = TwoStepAnalysis(TwoStepOptions()).run(cases)

        assert result.diagnostics.ok
        assert result.model.k == 2
        assert result.case_labels[0] != result.case_labels[20]
        assert result.distribution['combined'] == 40
        assert result.silhouette > 0.5
        summary = result.get_summary()
        assert summary['k'] == 2 and summary['clustered'] == 40

    def test_missing_values_excluded(self):
        """Incomplete cases are excluded and keep no label."""
        frame = blob_frame()
        frame.loc[3, 'x'] = np.nan
        frame.loc[25, 'group'] = None
        cases = CaseMatrix.from_frame(frame, ['x', 'y'], ['group'])
        result = run_twostep(cases, TwoStepOptions(cluster_mode='fixed', fixed_k=2))

        assert result.case_labels[3] is None
        assert result.case_labels[25] is None
        assert sum(label is not None for label in result.case_labels) == 38
        assert result.distribution['excluded'] == 2
        assert any('excluded' in w for w in result.diagnostics.warnings)

    def test_model_error_recorded(self):
        """Configuration problems are recorded, not raised."""
        cases = CaseMatrix.from_frame(blob_frame(3), ['x'], ['group'])
        result = run_twostep(cases, TwoStepOptions(distance='euclidean'))

        assert result.model is None
        assert 'continuous variables only' in result.diagnostics.errors['model']
        assert result.to_dict()['summary']['k'] is None
