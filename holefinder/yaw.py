"""Yaw angle normalisation and averaging for detected openings.

An opening's yaw is only defined up to a half turn, since the plane normal
may point either way. These helpers fold angles accordingly.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

_HALF_PI = math.pi / 2.0
_TWO_PI = 2.0 * math.pi


def truncate_yaw(yaw: float) -> float:
    """Bring ``yaw`` into [-pi, pi] with at most one full-turn shift."""
    if yaw > math.pi:
        yaw -= _TWO_PI
    if yaw < -math.pi:
        yaw += _TWO_PI
    return yaw


def _fold_half_turn(angle: float) -> float:
    if angle > _HALF_PI:
        angle -= math.pi
    if angle < -_HALF_PI:
        angle += math.pi
    return angle


def correct_detection_yaw(yaw: float) -> float:
    """Normalise ``yaw`` to [-pi/2, pi/2], treating opposite headings as equal."""
    return _fold_half_turn(truncate_yaw(yaw))


def correct_detection_yaw_towards(yaw: float, mean_yaw: float) -> float:
    """Pick the half-turn equivalent of ``yaw`` that lies closest to ``mean_yaw``."""
    yaw = truncate_yaw(yaw)
    delta = _fold_half_turn(truncate_yaw(yaw - mean_yaw))
    return truncate_yaw(mean_yaw + delta)


def mean_yaw(yaws: Iterable[float]) -> float:
    """Running mean of yaw angles, each aligned to the mean so far.

    Raises ``ValueError`` when no angles are given.
    """
    mean: float | None = None
    for count, raw in enumerate(yaws):
        current = correct_detection_yaw(raw)
        if mean is None:
            mean = current
            continue
        current = correct_detection_yaw_towards(current, mean)
        mean = (mean * count + current) / (count + 1)
    if mean is None:
        raise ValueError("cannot average an empty sequence of yaw angles")
    return mean