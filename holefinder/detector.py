"""Detection of openings in walls from depth images and organised point clouds.

Closed contours found in a depth image are mapped onto the matching lidar
cloud, fitted with a plane and checked for size, orientation and a free
centre. Accepted openings are tracked over time until they are stable.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from .cloud import PointCloud
from .contours import crop_rows, detect_closed_contours, draw_contours, reindex_contours
from .depth import scale_to_uint8
from .geometry import (
    Transform,
    crop_box,
    euler_angles_xyz,
    fit_plane_ransac,
    quaternion_from_two_vectors,
    quaternion_to_matrix,
)
from .params import DetectorParams
from .tracking import DetectionTracker, ManholeDetection

WORLD_FRAME = "world"
CLOUD_BUFFER_SIZE = 10

_NEIGHBOUR_MARGIN = 0.4
_PLANE_DISTANCE = 0.1
_MIN_CONTOUR_POINTS = 3
_INTENSITY_STEP = 100.0
_ODOMETRY_RADIUS = 0.4
_FIRST_OPENING_RADIUS = 1.0
_INITIAL_UPPER = np.array([-9999.0, -99999.0, -9999.0])
_INITIAL_LOWER = np.array([9999.0, 9999.0, 9999.0])
_X_AXIS = np.array([1.0, 0.0, 0.0])

Pose = tuple[np.ndarray, np.ndarray]
TransformLookup = Callable[[str, str, int], "Transform | None"]


def _empty_points() -> np.ndarray:
    return np.empty((0, 4))


@dataclass
class DetectionResult:
    """Outcome of processing one frame.

    Poses are ``(position, quaternion)`` pairs in the world frame.
    ``contour_points`` holds ``(x, y, z, intensity)`` rows of the inlier points
    of accepted openings, in the sensor frame.
    """

    transform_found: bool
    contours: list[np.ndarray] = field(default_factory=list)
    centroids: list[Pose] = field(default_factory=list)
    new_stable: list[ManholeDetection] = field(default_factory=list)
    stable: list[ManholeDetection] = field(default_factory=list)
    contour_points: np.ndarray = field(default_factory=_empty_points)
    detection_odometry: list[Any] = field(default_factory=list)
    detection_attempt_poses: list[Pose] = field(default_factory=list)
    contour_image: np.ndarray | None = None
    frame_mask: np.ndarray | None = None
    stamp: int | None = None
    frame_id: str | None = None


class ManholeDetector:
    """Finds wall openings and keeps track of the ones seen repeatedly.

    ``transform_lookup(target_frame, source_frame, stamp)`` returns the
    ``Transform`` from the sensor frame to the world frame, or raises
    ``LookupError`` (or returns None) when it is not available.
    """

    def __init__(
        self,
        params: DetectorParams | None = None,
        transform_lookup: TransformLookup | None = None,
    ) -> None:
        if transform_lookup is None:
            raise ValueError("a transform lookup is required")
        self.params = params if params is not None else DetectorParams()
        self._transform_lookup = transform_lookup
        self._tracker = DetectionTracker(
            self.params.cluster_radius,
            self.params.buffer_size,
            self.params.min_detection_to_be_permanent,
        )
        self._clouds: deque[PointCloud] = deque(maxlen=CLOUD_BUFFER_SIZE)
        self._lock = threading.Lock()
        self._first_location: np.ndarray | None = None
        self._attempt_poses: list[Pose] = []
        self.odometry: Any = None
        self.manhole_position: np.ndarray | None = None
        self.rng: np.random.Generator = np.random.default_rng()

    @property
    def detection_attempt_poses(self) -> list[Pose]:
        """Sensor poses at which the first stable opening was seen again."""
        return list(self._attempt_poses)

    def add_cloud(self, cloud: PointCloud) -> None:
        """Buffer a point cloud; only the newest ten are kept."""
        if not isinstance(cloud, PointCloud):
            raise TypeError(f"expected a PointCloud, got {type(cloud).__name__}")
        with self._lock:
            self._clouds.appendleft(cloud)

    def find_corresponding_cloud(self, stamp: int) -> PointCloud:
        """Buffered cloud closest in time to ``stamp``; the newest wins a tie."""
        with self._lock:
            if not self._clouds:
                raise LookupError("no point cloud received")
            return min(self._clouds, key=lambda cloud: abs(cloud.stamp - stamp))

    def set_odometry(self, odometry: Any) -> None:
        """Remember the latest odometry, reported when the known opening is seen."""
        self.odometry = odometry

    def reset_detection_poses(self) -> bool:
        """Forget the recorded detection attempt poses."""
        self._attempt_poses.clear()
        return True

    def stable_manholes(self) -> list[ManholeDetection]:
        """Openings that have been seen often enough to be trusted."""
        return self._tracker.stable_detections()

    def re_evaluate(self, detection_id: int) -> None:
        """Make the opening with ``detection_id`` prove itself again."""
        self._tracker.re_evaluate(detection_id)

    def process_depth_image(
        self, image: np.ndarray, stamp: int, frame_id: str
    ) -> DetectionResult:
        """Run detection on a raw depth image taken at ``stamp`` (nanoseconds)."""
        cloud = self.find_corresponding_cloud(stamp)
        depth = scale_to_uint8(image)
        frame_mask = None
        if self.params.crop_out_rows:
            start, end = self.params.indices_to_crop
            cropped = crop_rows(depth, start, end)
            frame_mask = np.where(depth == 0, 255, 0).astype(np.uint8)
            found = detect_closed_contours(cropped, self.params.canny_low_thres)
            contours = reindex_contours(found, start, end)
        else:
            contours = detect_closed_contours(depth, self.params.canny_low_thres)
        contour_image = draw_contours(depth, contours)
        result = self.filter_contours(contours, cloud)
        return replace(
            result,
            contour_image=contour_image,
            frame_mask=frame_mask,
            stamp=stamp,
            frame_id=frame_id,
        )

    def _select_point(
        self, points: np.ndarray, ranges: np.ndarray, x: int, y: int
    ) -> np.ndarray | None:
        """Cloud point behind pixel (x, y), preferring a clearly closer neighbour."""
        height, width = ranges.shape
        offsets = self.params.px_offsets
        slack = self.params.slack
        min_distance = self.params.min_manhole_robot_distance

        def column(px: int, row: int) -> int:
            return (px + width - offsets[row]) % width

        col = column(x, y)
        best, best_range = points[y, col], ranges[y, col]
        if best_range <= min_distance:
            return None
        up, down = min(y + slack, height - 1), max(y - slack, 0)
        right, left = min(x + slack, width - 1), max(x - slack, 0)
        neighbours = (
            (x, up), (x, down), (right, y), (left, y),
            (left, down), (right, down), (left, up), (right, up),
        )
        for nx, ny in neighbours:
            ncol = column(nx, ny)
            candidate = ranges[ny, ncol]
            if (
                candidate < best_range
                and candidate > min_distance
                and abs(candidate - best_range) > _NEIGHBOUR_MARGIN
            ):
                best, best_range = points[ny, ncol], candidate
        return best

    def filter_contours(
        self, contours: Iterable[Sequence | np.ndarray], cloud: PointCloud
    ) -> DetectionResult:
        """Turn image contours into opening detections and update the tracks."""
        contours = [np.asarray(contour, dtype=np.int64).reshape(-1, 2) for contour in contours]
        try:
            transform = self._transform_lookup(WORLD_FRAME, cloud.frame_id, cloud.stamp)
        except LookupError:
            transform = None
        if transform is None:
            return DetectionResult(transform_found=False, contours=contours)

        params = self.params
        points = cloud.points.astype(np.float64)
        ranges = cloud.ranges().astype(np.float64)
        all_points = cloud.flat()
        half_box = np.asarray(params.mh_centroid_bbox, dtype=np.float64) / 2.0
        size_min = np.asarray(params.manhole_bounding_box_size_min)
        size_max = np.asarray(params.manhole_bounding_box_size_max)

        counter = 0
        centroids: list[Pose] = []
        detections: list[tuple[np.ndarray, float]] = []
        coloured: list[np.ndarray] = []
        odometry: list[Any] = []

        for contour in contours:
            selected = [
                point
                for point in (
                    self._select_point(points, ranges, int(x), int(y)) for x, y in contour
                )
                if point is not None
            ]
            if len(selected) <= _MIN_CONTOUR_POINTS:
                continue
            contour_points = np.array(selected)
            try:
                coefficients, inliers = fit_plane_ransac(
                    contour_points, _PLANE_DISTANCE, rng=self.rng
                )
            except (ValueError, np.linalg.LinAlgError):
                continue
            if len(inliers) == 0:
                continue

            normal = coefficients[:3]
            quat = quaternion_from_two_vectors(_X_AXIS, normal)
            normal_world = transform.rotate(normal)
            pitch = math.atan2(normal_world[2], math.hypot(normal_world[0], normal_world[1]))
            counter += 1
            if abs(pitch) >= params.max_normal_pitch:
                continue

            inlier_points = contour_points[inliers]
            centroid = inlier_points.mean(axis=0)
            rotation = quaternion_to_matrix(quat)
            in_plane = inlier_points @ rotation
            upper = np.maximum(in_plane.max(axis=0), _INITIAL_UPPER)
            lower = np.minimum(in_plane.min(axis=0), _INITIAL_LOWER)
            if np.linalg.norm(centroid) < params.min_manhole_robot_distance:
                continue

            inside = crop_box(
                all_points, -half_box, half_box, euler_angles_xyz(rotation), centroid
            )
            if len(inside) > params.max_points_inside_mh:
                continue

            extent = upper - lower
            if not (np.all(extent > size_min) and np.all(extent < size_max)):
                continue
            position_w, quat_w = transform.transform_pose(centroid, quat)
            yaw = float(euler_angles_xyz(quaternion_to_matrix(quat_w))[2])
            detections.append((position_w, yaw))
            centroids.append((position_w, quat_w))
            if (
                self.manhole_position is not None
                and np.linalg.norm(np.asarray(self.manhole_position) - position_w)
                <= _ODOMETRY_RADIUS
            ):
                odometry.append(self.odometry)
            reversed_points = inlier_points[::-1]
            coloured.append(
                np.column_stack(
                    (reversed_points, np.full(len(reversed_points), counter * _INTENSITY_STEP))
                )
            )

        new_stable = self._tracker.update(detections)
        stable = self._tracker.stable_detections()

        if self._first_location is None and stable:
            self._first_location = np.array(stable[0].mean_pos, dtype=np.float64)
        if self._first_location is not None:
            seen_again = any(
                np.linalg.norm(self._first_location - position) < _FIRST_OPENING_RADIUS
                for position, _ in centroids
            )
            if seen_again:
                self._attempt_poses.append(
                    (transform.translation.copy(), transform.rotation.copy())
                )

        return DetectionResult(
            transform_found=True,
            contours=contours,
            centroids=centroids,
            new_stable=new_stable,
            stable=stable,
            contour_points=np.vstack(coloured) if coloured else _empty_points(),
            detection_odometry=odometry,
            detection_attempt_poses=list(self._attempt_poses),
        )