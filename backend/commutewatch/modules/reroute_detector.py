"""Reroute (diversion) detection for a single new poll sample.

A sample is flagged when it AND the sample immediately before it are both
"elevated": at least ``threshold_pct`` percent longer than the median distance
of all prior samples in the session. One elevated reading is ordinary
GPS/traffic noise; two in a row is the minimal evidence of a sustained detour.
The median resists being dragged upward by the very detours being detected.

Pure functions, no database access.
"""
from __future__ import annotations

from typing import Sequence

# Below this many prior samples there is no baseline to compare against
_MIN_PRIOR_SAMPLES = 2
DEFAULT_THRESHOLD_PCT = 15


def calculate_median(values: Sequence[float]) -> float:
    """Median; mean of the two middle values for even counts, 0.0 when empty."""
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return float(ordered[mid])


def reroute_threshold(prior_distances: Sequence[float], threshold_pct: float = DEFAULT_THRESHOLD_PCT) -> float:
    return calculate_median(prior_distances) * (1.0 + threshold_pct / 100.0)


def detect_reroute(
    prior_distances: Sequence[float],
    new_distance: float,
    threshold_pct: float = DEFAULT_THRESHOLD_PCT,
) -> bool:
    """Decide whether ``new_distance`` marks a sustained detour.

    Args:
        prior_distances: distances of the session's earlier samples,
            oldest -> newest (the last element is the most recent).
        new_distance: distance of the sample being evaluated.
        threshold_pct: elevation over the median that counts as "elevated".
    """
    if len(prior_distances) < _MIN_PRIOR_SAMPLES:
        return False
    threshold = reroute_threshold(prior_distances, threshold_pct)
    current_elevated = new_distance >= threshold
    prior_elevated = prior_distances[-1] >= threshold
    return current_elevated and prior_elevated
