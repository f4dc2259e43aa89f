"""
Tests for the two-step clustering module.
"""

import pytest
import numpy as np
import sys
import os

# Add the parent directory to the path to import the module
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clustermath.errors import ConfigurationError
from clustermath.math.options import TwoStepOptions
from clustermath.math.twostep import (
    TwoStepClusterer, auto_clustering_table, criterion_changes, distance_ratios,
    merge_distance_for, select_k
)


def two_blobs(n=30, seed=0):
    rng = np.random.RandomState(seed)
    first = rng.normal(0.0, 0.1, size=(n, 2))
    second = rng.normal(10.0, 0.1, size=(n, 2))
    return np.vstack([first, second])


class TestSelectK:
    """Tests for automatic selection of the number of clusters."""

    def test_merge_distance_for(self):
        """d(k) is the distance of the merge from k to k - 1 clusters."""
        distances = [1.0, 2.0, 4.0]
        assert merge_distance_for(distances, 2) == 4.0
        assert merge_distance_for(distances, 4) == 1.0

    def test_distance_ratios(self):
        """Ratios of successive merge distances; zero denominators give 0."""
        assert distance_ratios([1.0, 2.0, 4.0], 3) == {2: 2.0, 3: 2.0}
        assert distance_ratios([0.0, 0.0, 4.0], 3) == {2: 0.0, 3: 0.0}

    def test_clear_gap(self):
        """One dominant ratio wins outright."""
        assert select_k([1.0, 1.0, 1.0, 10.0]) == 2

    def test_tied_ratios(self):
        """Without a clear winner the larger k is chosen."""
        assert select_k([1.0, 2.0, 4.0]) == 3

    def test_criterion_estimate(self):
        """The criterion levels off after two clusters."""
        criterion = [100.0, 50.0, 49.9, 49.8, 49.7]
        assert select_k([1.0, 1.0, 1.0, 1.0], criterion=criterion) == 2

    def test_rising_criterion(self):
        """If two clusters are no better than one, K is 1."""
        assert select_k([1.0], criterion=[10.0, 20.0]) == 1

    def test_single_cluster(self):
        """One sub-cluster means one cluster."""
        assert select_k([]) == 1

    def test_max_k(self):
        """K never exceeds max_k."""
        assert select_k([1.0, 2.0, 3.0, 4.0, 5.0, 6.0], max_k=3) <= 3

    def test_auto_clustering_table(self):
        """Rows carry change, ratio of changes and ratio of distances."""
        criterion = [100.0, 50.0, 40.0]
        rows = auto_clustering_table(criterion, [1.0, 2.0, 4.0])

        assert [row.k for row in rows] == [1, 2, 3]
        assert rows[0].change is None
        assert rows[1].ratio_of_changes == pytest.approx(1.0)
        assert rows[2].ratio_of_changes == pytest.approx(0.2)
        assert rows[1].ratio_of_distances == pytest.approx(2.0)
        assert criterion_changes(criterion) == [None, -50.0, -10.0]


class TestTwoStepClusterer:
    """Tests for the TwoStepClusterer class."""

    def test_fixed_two_blobs(self):
        """A fixed K of 2 separates two well-separated blobs."""
        options = TwoStepOptions(cluster_mode='fixed', fixed_k=2)
        result = TwoStepClusterer(options).fit(two_blobs())

        assert result.k == 2
        assert len(set(result.labels[:30])) == 1
        assert len(set(result.labels[30:])) == 1
        assert result.labels[0] != result.labels[30]
        assert result.auto_clustering is None

    def test_auto_two_blobs(self):
        """Automatic selection finds the two blobs."""
        result = TwoStepClusterer(TwoStepOptions()).fit(two_blobs())

        assert result.k == 2
        assert result.labels[0] != result.labels[30]
        assert result.auto_clustering[0].k == 1
        assert result.auto_clustering[1].change < 0

    def test_auto_euclidean(self):
        """Euclidean distance also finds the two blobs."""
        result = TwoStepClusterer(TwoStepOptions(distance='euclidean')).fit(two_blobs())
        assert result.k == 2

    def test_categorical_only(self):
        """Purely categorical data clusters by category."""
        categorical = [['a']] * 10 + [['b']] * 10
        options = TwoStepOptions(cluster_mode='fixed', fixed_k=2)
        result = TwoStepClusterer(options).fit(categorical=categorical)

        assert len(result.subclusters) == 2
        assert len(set(result.labels[:10])) == 1
        assert len(set(result.labels[10:])) == 1
        assert result.labels[0] != result.labels[10]

    def test_mixed_variables(self):
        """Continuous and categorical variables together."""
        continuous = two_blobs(20)
        categorical = [['low']] * 20 + [['high']] * 20
        options = TwoStepOptions(cluster_mode='fixed', fixed_k=2)
        result = TwoStepClusterer(options).fit(continuous, categorical)
        assert result.labels[0] != result.labels[20]

    def test_default_options_compress(self):
        """Default options pre-cluster a few hundred cases into a handful of sub-clusters."""
        rng = np.random.RandomState(3)
        data = np.vstack([rng.normal(center, 0.5, size=(100, 2))
                          for center in ([0.0, 0.0], [10.0, 0.0], [0.0, 10.0])])
        result = TwoStepClusterer(TwoStepOptions(seed=3)).fit(data)

        assert len(result.subclusters) < 30
        assert result.rebuilds == 0
        for entry in result.subclusters:
            assert len({i // 100 for i in entry.cases}) == 1

    def test_labels_cover_every_case(self):
        """Every case gets a label in 1..K and sub-clusters partition the cases."""
        data = np.random.RandomState(1).rand(200, 2)
        options = TwoStepOptions(max_branch=3, max_depth=2, initial_threshold=0.01, seed=4)
        result = TwoStepClusterer(options).fit(data)

        assert result.rebuilds > 0
        assert set(result.labels) <= set(range(1, result.k + 1))
        members = result.cluster_members()
        assert sorted(i for cases in members.values() for i in cases) == list(range(200))
        cases = sorted(i for entry in result.subclusters for i in entry.cases)
        assert cases == list(range(200))

    def test_deterministic(self):
        """Same seed, same data, same result."""
        data = np.random.RandomState(2).rand(200, 2)
        options = TwoStepOptions(max_branch=3, max_depth=2, seed=7)
        first = TwoStepClusterer(options).fit(data)
        second = TwoStepClusterer(options).fit(data)

        assert list(first.labels) == list(second.labels)
        assert first.schedule.coefficients() == second.schedule.coefficients()

    def test_fixed_k_clamped(self):
        """Asking for more clusters than sub-clusters is clamped with a warning."""
        categorical = [['a']] * 5 + [['b']] * 5
        options = TwoStepOptions(cluster_mode='fixed', fixed_k=5)
        result = TwoStepClusterer(options).fit(categorical=categorical)

        assert result.k == 2
        assert result.diagnostics.warnings

    def test_custom_selector(self):
        """A custom K selector is used in automatic mode."""
        clusterer = TwoStepClusterer(TwoStepOptions(), k_selector=lambda d, max_k, c: 1)
        result = clusterer.fit(two_blobs())
        assert result.k == 1
        assert set(result.labels) == {1}

    def test_euclidean_with_categoricals(self):
        """Euclidean distance cannot handle categorical variables."""
        options = TwoStepOptions(distance='euclidean')
        with pytest.raises(ConfigurationError, match="continuous variables only"):
            TwoStepClusterer(options).fit(two_blobs(5), [['a']] * 10)

    def test_missing_values(self):
        """Incomplete cases are rejected."""
        data = two_blobs(5)
        data[3, 1] = np.nan
        with pytest.raises(ConfigurationError, match="complete cases"):
            TwoStepClusterer().fit(data)

    def test_no_variables(self):
        """No data at all is rejected."""
        with pytest.raises(ConfigurationError):
            TwoStepClusterer().fit()

    def test_invalid_options(self):
        """Unknown option values fail early."""
        with pytest.raises(ConfigurationError):
            TwoStepOptions(distance='manhattan')
        with pytest.raises(ConfigurationError):
            TwoStepOptions(criterion='hqic')
