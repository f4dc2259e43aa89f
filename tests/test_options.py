"""
Tests for the clustering options module.
"""

import pytest
import sys
import os

# Add the parent directory to the path to import the module
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from clustermath.errors import ConfigurationError
from clustermath.math.distance import StandardizeMethod
from clustermath.math.options import (
    DisplayMode, DisplayWindow, HierarchicalOptions, LinkageMethod, MembershipRequest, TwoStepOptions
)


class TestLinkageMethod:
    """Tests for linkage method parsing."""

    def test_aliases(self):
        """Common spellings resolve to the same method."""
        assert LinkageMethod.parse('average-between') is LinkageMethod.AVERAGE_BETWEEN
        assert LinkageMethod.parse('BAVERAGE') is LinkageMethod.AVERAGE_BETWEEN
        assert LinkageMethod.parse('WAVERAGE') is LinkageMethod.AVERAGE_WITHIN
        assert LinkageMethod.parse("Ward's method") is LinkageMethod.WARD
        assert LinkageMethod.parse('nearest neighbor') is LinkageMethod.SINGLE

    def test_unknown(self):
        """Unknown names are configuration errors."""
        with pytest.raises(ConfigurationError):
            LinkageMethod.parse('kmeans')

    def test_monotone(self):
        """Centroid and median may produce inversions."""
        assert LinkageMethod.WARD.monotone
        assert not LinkageMethod.CENTROID.monotone
        assert not LinkageMethod.MEDIAN.monotone


class TestDisplayWindow:
    """Tests for the DisplayWindow class."""

    def test_modes(self):
        """All, range, single and none."""
        assert DisplayWindow().ks(3) == [1, 2, 3]
        assert DisplayWindow(DisplayMode.RANGE, start=2, stop=10, step=2).ks(7) == [2, 4, 6]
        assert DisplayWindow(DisplayMode.SINGLE, k=2).ks(3) == [2]
        assert DisplayWindow(DisplayMode.NONE).ks(3) == []

    def test_invalid_range(self):
        """A range that ends before it starts is rejected."""
        with pytest.raises(ConfigurationError):
            DisplayWindow(DisplayMode.RANGE, start=3, stop=2).ks(5)

    def test_from_dict(self):
        """Dicts with a mode name are parsed."""
        window = DisplayWindow.from_dict({'mode': 'RANGE', 'start': 1, 'stop': 4, 'step': 3})
        assert window.mode is DisplayMode.RANGE
        assert window.ks(10) == [1, 4]
        with pytest.raises(ConfigurationError):
            DisplayWindow.from_dict({'mode': 'sideways'})


class TestMembershipRequest:
    """Tests for the MembershipRequest class."""

    def test_range_clipped(self):
        """A range past n is clipped to n."""
        assert MembershipRequest('range', min_k=2, max_k=9).ks(4) == [2, 3, 4]

    def test_range_needs_bounds(self):
        """A range without bounds is rejected."""
        with pytest.raises(ConfigurationError):
            MembershipRequest('range').ks(4)

    def test_unknown_mode(self):
        """Unknown modes are rejected."""
        with pytest.raises(ConfigurationError):
            MembershipRequest.from_dict({'mode': 'sometimes'})


class TestHierarchicalOptions:
    """Tests for the HierarchicalOptions class."""

    def test_defaults(self):
        """Average linkage between groups on squared Euclidean distance."""
        options = HierarchicalOptions.from_dict({})
        assert options.method is LinkageMethod.AVERAGE_BETWEEN
        assert options.measure.name == 'SEUCLID'
        assert options.standardize is StandardizeMethod.NONE
        assert options.display.mode is DisplayMode.ALL

    def test_from_dict(self):
        """Every section key is read."""
        options = HierarchicalOptions.from_dict({
            'method': 'complete',
            'measure': 'MINKOWSKI',
            'power': 3,
            'standardize': 'z',
            'transform': {'rescale': True},
            'membership': {'mode': 'single', 'k': 3}
        })
        assert options.method is LinkageMethod.COMPLETE
        assert options.measure.name == 'MINKOWSKI'
        assert options.measure.power == 3
        assert options.standardize is StandardizeMethod.Z_SCORES
        assert options.rescale
        assert options.membership.ks(5) == [3]

    def test_bad_standardize_by(self):
        """Standardization is by variable or by case."""
        with pytest.raises(ConfigurationError):
            HierarchicalOptions.from_dict({'standardize-by': 'cluster'})

    def test_string_flags(self):
        """Transform flags given as strings are parsed, not truth-tested."""
        options = HierarchicalOptions.from_dict({
            'transform': {'absolute': 'false', 'change-sign': 'yes', 'rescale': 'off'}
        })
        assert options.absolute_values is False
        assert options.change_sign is True
        assert options.rescale is False


class TestTwoStepOptions:
    """Tests for the TwoStepOptions class."""

    def test_from_dict(self):
        """The clusters subsection is read."""
        options = TwoStepOptions.from_dict({
            'distance': 'Euclidean',
            'max-branch': 4,
            'max-depth': 2,
            'seed': None,
            'clusters': {'mode': 'fixed', 'fixed-k': 3}
        })
        assert options.use_euclidean
        assert options.capacity == 16
        assert options.seed is None
        assert options.cluster_mode == 'fixed'
        assert options.fixed_k == 3

    def test_string_flags(self):
        """Quoted booleans keep their meaning."""
        options = TwoStepOptions.from_dict({'standardize': 'false', 'noise': 'false'})
        assert options.standardize is False
        assert options.noise is False

        options = TwoStepOptions.from_dict({'standardize': 'True', 'noise': 1})
        assert options.standardize is True
        assert options.noise is True

    def test_bad_flag(self):
        """Values that are not booleans are rejected."""
        with pytest.raises(ConfigurationError, match="noise"):
            TwoStepOptions.from_dict({'noise': 'sometimes'})

    def test_validation(self):
        """Out-of-range values fail at construction."""
        with pytest.raises(ConfigurationError):
            TwoStepOptions(max_branch=1)
        with pytest.raises(ConfigurationError):
            TwoStepOptions(noise_threshold=1.5)
        with pytest.raises(ConfigurationError):
            TwoStepOptions(cluster_mode='guess')
