"""Tunable parameters of the opening detector."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

Vector3 = tuple[float, float, float]


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"parameter {name!r} must be an integer, got {value!r}")
    return value


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"parameter {name!r} must be a number, got {value!r}")
    return float(value)


def _as_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"parameter {name!r} must be a boolean, got {value!r}")
    return value


def _number_list(value: Any, length: int, kind: type) -> tuple | None:
    """Convert ``value`` to a tuple of ``length`` numbers, or None if it does not fit."""
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        return None
    if len(value) != length:
        return None
    items = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            return None
        if kind is int and not isinstance(item, int):
            return None
        items.append(kind(item))
    return tuple(items)


_SCALARS: tuple[tuple[str, str, Callable[[str, Any], Any]], ...] = (
    ("cluster_radius", "cluster_radius", _as_float),
    ("canny_low_thres", "canny_low_thres", _as_int),
    ("slack", "slack", _as_int),
    ("col_offset", "col_offset", _as_int),
    ("row_offset", "row_offset", _as_int),
    ("buffer_size", "buffer_size", _as_int),
    ("min_detection_to_be_permenant", "min_detection_to_be_permanent", _as_int),
    ("min_manhole_robot_distance", "min_manhole_robot_distance", _as_float),
    ("max_normal_pitch", "max_normal_pitch", _as_float),
    ("crop_out_rows", "crop_out_rows", _as_bool),
    ("max_points_inside_mh", "max_points_inside_mh", _as_int),
    ("use_px_offsets", "use_px_offsets", _as_bool),
    ("num_laser_beams", "num_laser_beams", _as_int),
)

_VECTORS = (
    "manhole_bounding_box_size_min",
    "mh_centroid_bbox",
    "manhole_bounding_box_size_max",
)

_PX_OFFSET_COUNT = 64


@dataclass
class DetectorParams:
    """Detector configuration; defaults are those used when nothing is set."""

    cluster_radius: float = 2.0
    canny_low_thres: int = 20
    slack: int = 2
    col_offset: int = 20
    row_offset: int = 10
    buffer_size: int = 10
    min_detection_to_be_permanent: int = 4
    min_manhole_robot_distance: float = 0.3
    max_normal_pitch: float = 0.78
    crop_out_rows: bool = False
    max_points_inside_mh: int = 2
    use_px_offsets: bool = False
    num_laser_beams: int = 64
    manhole_bounding_box_size_min: Vector3 = (0.0, 0.5, 0.7)
    mh_centroid_bbox: Vector3 = (1.0, 0.3, 0.3)
    manhole_bounding_box_size_max: Vector3 = (0.6, 0.9, 1.1)
    indices_to_crop: tuple[int, int] = (0, 0)
    px_offsets: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if not self.px_offsets:
            self.px_offsets = (0,) * self.num_laser_beams
        else:
            self.px_offsets = tuple(self.px_offsets)

    @property
    def cropped_row_count(self) -> int:
        """Number of image rows removed when cropping, both end rows included."""
        start, end = self.indices_to_crop
        return end - start + 1

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> DetectorParams:
        """Build parameters from a name-to-value mapping.

        Missing scalars keep their defaults and badly typed scalars raise
        ``ValueError``. Vector parameters of the wrong shape fall back to
        their defaults. Pixel offsets are only taken when ``use_px_offsets``
        is set and exactly 64 integers are given.
        """
        kwargs: dict[str, Any] = {}
        for key, field_name, convert in _SCALARS:
            if key in values:
                kwargs[field_name] = convert(key, values[key])

        for key in _VECTORS:
            vector = _number_list(values.get(key), 3, float)
            if vector is not None:
                kwargs[key] = vector

        if kwargs.get("use_px_offsets", False):
            offsets = _number_list(values.get("px_offsets"), _PX_OFFSET_COUNT, int)
            if offsets is not None:
                kwargs["px_offsets"] = offsets

        crop = _number_list(values.get("indices_to_crop"), 2, int)
        if crop is not None:
            kwargs["indices_to_crop"] = crop

        return cls(**kwargs)