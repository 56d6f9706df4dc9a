"""Tests for reroute (diversion) detection."""
from __future__ import annotations

import pytest

from commutewatch.modules.reroute_detector import (
    calculate_median,
    detect_reroute,
    reroute_threshold,
)


class TestCalculateMedian:
    @pytest.mark.parametrize("values, expected", [
        ([5000, 5000, 5000], 5000.0),
        ([4000, 5000, 6000], 5000.0),
        ([4000, 6000], 5000.0),
        ([6000, 4000, 5000], 5000.0),
        ([7], 7.0),
    ])
    def test_median(self, values, expected):
        assert calculate_median(values) == expected

    def test_empty_is_zero(self):
        assert calculate_median([]) == 0.0


class TestDetectReroute:
    def test_single_spike_not_flagged(self):
        """One elevated reading is noise."""
        assert detect_reroute([5000] * 9, 6200) is False

    def test_two_consecutive_spikes_flagged(self):
        assert detect_reroute([5000] * 9 + [6000], 6200) is True

    def test_fewer_than_two_priors(self):
        assert detect_reroute([], 9000) is False
        assert detect_reroute([5000], 9000) is False

    def test_threshold_is_inclusive(self):
        # median 4000 -> threshold 6000 exactly
        assert detect_reroute([4000, 4000, 6000], 6000, threshold_pct=50) is True

    def test_previous_elevated_but_current_back_to_normal(self):
        assert detect_reroute([5000] * 9 + [6000], 5100) is False

    def test_custom_threshold(self):
        assert detect_reroute([5000] * 9 + [5300], 5400, threshold_pct=5) is True
        assert detect_reroute([5000] * 9 + [5300], 5400, threshold_pct=15) is False

    def test_threshold_uses_median_not_mean(self):
        # A previous detour does not drag the median up
        priors = [5000, 5000, 5000, 9000, 9000]
        assert reroute_threshold(priors, 15) == pytest.approx(5750.0)
        assert detect_reroute(priors, 6000) is True
