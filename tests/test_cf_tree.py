"""
Tests for the CF-tree pre-clustering module.
"""

import pytest
import numpy as np
import sys
import os

# Add the parent directory to the path to import the module
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clustermath.errors import ConfigurationError
from clustermath.math.cf_tree import (
    DEFAULT_THRESHOLD, MISSING_CATEGORY, CFDistance, CFEntry, CFTree, build_cf_tree
)


def covered_cases(entries):
    cases = []
    for entry in entries:
        cases.extend(entry.cases)
    return sorted(cases)


class TestCFEntry:
    """Tests for the CFEntry class."""

    def test_single_case(self):
        """A single-case entry has the case as its centroid and zero variance."""
        entry = CFEntry.from_case(3, [1.5, -2.0], ['x'])
        assert entry.n == 1
        assert entry.cases == [3]
        assert np.allclose(entry.centroid(), [1.5, -2.0])
        assert np.allclose(entry.variances(), 0.0)
        assert entry.category_counts == [{'x': 1}]

    def test_sufficient_statistics(self):
        """Sums, sums of squares and category counts accumulate."""
        entry = CFEntry(1, 1)
        for i, (value, key) in enumerate([(1.0, 'a'), (3.0, 'b'), (5.0, 'a')]):
            entry.add_case(i, [value], [key])

        assert entry.n == 3
        assert entry.sums[0] == pytest.approx(9.0)
        assert entry.sum_squares[0] == pytest.approx(35.0)
        assert entry.centroid()[0] == pytest.approx(3.0)
        assert entry.variances()[0] == pytest.approx(8.0 / 3.0)
        assert entry.category_counts == [{'a': 2, 'b': 1}]
        assert sum(entry.category_counts[0].values()) == entry.n

    def test_missing_category(self):
        """Missing categorical cells are counted under their own key."""
        entry = CFEntry.from_case(0, [], [None])
        assert entry.category_counts == [{MISSING_CATEGORY: 1}]

    def test_combine_leaves_inputs_unchanged(self):
        """combine returns a new entry; absorb mutates in place."""
        a = CFEntry.from_case(0, [0.0], ['a'])
        b = CFEntry.from_case(1, [2.0], ['b'])
        merged = a.combine(b)

        assert merged.n == 2
        assert merged.cases == [0, 1]
        assert a.n == 1 and b.n == 1

        a.absorb(b)
        assert a.n == 2
        assert a.category_counts == [{'a': 1, 'b': 1}]

    def test_frozen(self):
        """Frozen entries reject new cases."""
        entry = CFEntry.from_case(0, [1.0])
        entry.freeze()
        with pytest.raises(ValueError):
            entry.add_case(1, [2.0])
        assert not entry.copy().frozen


class TestCFDistance:
    """Tests for the CF distance measures."""

    def test_euclidean(self):
        """Euclidean distance is the distance between centroids."""
        distance = CFDistance(use_euclidean=True)
        a = CFEntry.from_case(0, [0.0, 0.0])
        b = CFEntry.from_case(1, [3.0, 4.0])
        assert distance(a, b) == pytest.approx(5.0)

    def test_log_likelihood_identical(self):
        """Identical entries are at distance zero."""
        distance = CFDistance(variance_floor=[1.0])
        a = CFEntry.from_case(0, [2.0], ['x'])
        b = CFEntry.from_case(1, [2.0], ['x'])
        assert distance(a, b) == pytest.approx(0.0)

    def test_log_likelihood_grows_with_separation(self):
        """Further apart entries are more distant, never negative."""
        distance = CFDistance(variance_floor=[1.0])
        a = CFEntry.from_case(0, [0.0])
        near = CFEntry.from_case(1, [0.5])
        far = CFEntry.from_case(2, [5.0])
        assert 0.0 <= distance(a, near) < distance(a, far)

    def test_categorical_only(self):
        """Different categories are further apart than equal ones."""
        distance = CFDistance()
        a = CFEntry.from_case(0, [], ['x'])
        b = CFEntry.from_case(1, [], ['x'])
        c = CFEntry.from_case(2, [], ['y'])
        assert distance(a, b) == pytest.approx(0.0)
        assert distance(a, c) == pytest.approx(2.0 * np.log(2.0))

    def test_cached_log_likelihood(self):
        """The cached term is refreshed when the entry changes."""
        distance = CFDistance(variance_floor=[1.0])
        entry = CFEntry.from_case(0, [0.0])
        first = distance.log_likelihood(entry)
        entry.add_case(1, [4.0])
        assert distance.log_likelihood(entry) != first


class TestCFTree:
    """Tests for the CFTree class."""

    def test_invalid_shape(self):
        """Branching below two is rejected."""
        with pytest.raises(ConfigurationError):
            CFTree(CFDistance(), max_branch=1)

    def test_capacity(self):
        """Capacity is max-branch to the power of max-depth."""
        assert CFTree(CFDistance(), 8, 3).capacity == 512

    def test_threshold_absorbs(self):
        """Cases within the threshold join an existing entry."""
        tree = CFTree(CFDistance(use_euclidean=True), threshold=1.0)
        tree.insert(0, [0.0])
        tree.insert(1, [0.5])
        tree.insert(2, [10.0])
        entries = tree.finish()
        assert [e.n for e in entries] == [2, 1]

    def test_rebuild_bounds_entries(self):
        """Exceeding capacity raises the threshold and condenses entries."""
        data = np.random.RandomState(0).rand(50, 2)
        entries, tree = build_cf_tree(data, max_branch=2, max_depth=2, initial_threshold=0.01, seed=0)

        assert tree.rebuilds > 0
        assert len(entries) <= 4
        assert tree.threshold > 0
        assert sum(e.n for e in entries) == 50
        assert covered_cases(entries) == list(range(50))

    def test_default_threshold(self):
        """A non-positive initial threshold starts at the default and compresses cases."""
        rng = np.random.RandomState(3)
        data = np.vstack([rng.normal(center, 0.5, size=(100, 2))
                          for center in ([0.0, 0.0], [10.0, 0.0], [0.0, 10.0])])
        entries, tree = build_cf_tree(data, initial_threshold=0.0, seed=3)

        assert tree.rebuilds == 0
        assert tree.threshold == DEFAULT_THRESHOLD
        assert len(entries) < 30
        assert covered_cases(entries) == list(range(300))
        for entry in entries:
            assert len({i // 100 for i in entry.cases}) == 1

    def test_entries_frozen_after_build(self):
        """Built entries are frozen and the tree takes no more cases."""
        entries, tree = build_cf_tree(np.arange(6, dtype=float).reshape(-1, 1), seed=1)
        assert all(e.frozen for e in entries)
        with pytest.raises(ValueError):
            tree.insert(6, [6.0])

    def test_categorical_counts(self):
        """Category counts in every entry sum to its case count."""
        rng = np.random.RandomState(3)
        continuous = rng.rand(40, 1)
        categorical = [[rng.choice(['a', 'b', 'c'])] for _ in range(40)]
        entries, _ = build_cf_tree(continuous, categorical, max_branch=2, max_depth=2, seed=3)
        for entry in entries:
            assert sum(entry.category_counts[0].values()) == entry.n

    def test_noise_keeps_coverage(self):
        """Dissolving small entries moves their cases, losing none."""
        data = np.random.RandomState(5).rand(60, 2)
        entries, tree = build_cf_tree(data, max_branch=3, max_depth=2, noise=True,
                                      noise_threshold=1.0, seed=5)
        largest = max(e.n for e in entries)
        assert covered_cases(entries) == list(range(60))
        assert sorted(tree.noise_cases) == sorted(set(tree.noise_cases))
        assert all(e.n >= 1 for e in entries)
        assert largest >= 60 // len(entries)

    def test_seed_reproducible(self):
        """A fixed seed reproduces the same sub-clusters."""
        data = np.random.RandomState(8).rand(80, 3)
        first, _ = build_cf_tree(data, max_branch=3, max_depth=2, seed=11)
        second, _ = build_cf_tree(data, max_branch=3, max_depth=2, seed=11)
        assert [e.cases for e in first] == [e.cases for e in second]

    def test_empty_dataset(self):
        """No cases is a configuration error."""
        with pytest.raises(ConfigurationError):
            build_cf_tree(np.zeros((0, 2)))
