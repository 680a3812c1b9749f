"""Conversion of point clouds and raw range images to 8-bit depth images."""

from __future__ import annotations

import numpy as np

from .cloud import PointCloud

DEFAULT_MAX_RANGE = 20.0


def cloud_to_depth_image(
    points: PointCloud | np.ndarray, max_range: float = DEFAULT_MAX_RANGE
) -> np.ndarray:
    """Map each point's range onto 0..255, saturating at ``max_range``.

    Values are truncated, not rounded. Points with no valid range map to 0.
    """
    if max_range <= 0:
        raise ValueError(f"max_range must be positive, got {max_range}")
    cloud = points if isinstance(points, PointCloud) else PointCloud(points)
    ranges = np.minimum(cloud.ranges().astype(np.float64), max_range)
    scaled = np.nan_to_num(255.0 * ranges / max_range, nan=0.0)
    return np.trunc(scaled).astype(np.uint8)


def scale_to_uint8(image: np.ndarray) -> np.ndarray:
    """Stretch a single-channel image linearly so its minimum is 0 and maximum 255.

    A constant image is scaled as if its range were 0..2, rounding to nearest
    and saturating at 255.
    """
    data = np.asarray(image)
    if data.ndim != 2:
        raise ValueError(f"expected a single-channel 2-D image, got shape {data.shape}")
    if data.size == 0:
        raise ValueError("cannot scale an empty image")
    values = data.astype(np.float64)
    low, high = float(values.min()), float(values.max())
    if low == high:
        low, high = 0.0, 2.0
    shifted = np.maximum(values - low, 0.0)
    scaled = np.rint(shifted * (255.0 / (high - low)))
    return np.clip(scaled, 0, 255).astype(np.uint8)