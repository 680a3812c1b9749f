"""Rotations, rigid transforms, RANSAC plane fitting and box cropping of points.

Quaternions are ``(x, y, z, w)`` arrays, as used by pose messages.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .cloud import PointCloud

_EPSILON = 1e-12
_RANSAC_PROBABILITY = 0.99


def _vector3(value: Sequence[float] | np.ndarray, name: str = "vector") -> np.ndarray:
    vector = np.asarray(value, dtype=np.float64)
    if vector.shape != (3,):
        raise ValueError(f"{name} must have three components, got shape {vector.shape}")
    return vector


def _quaternion(value: Sequence[float] | np.ndarray) -> np.ndarray:
    quaternion = np.asarray(value, dtype=np.float64)
    if quaternion.shape != (4,):
        raise ValueError(f"quaternion must have four components, got shape {quaternion.shape}")
    return quaternion


def _unit(value: Sequence[float] | np.ndarray, name: str) -> np.ndarray:
    vector = _vector3(value, name)
    norm = np.linalg.norm(vector)
    if norm == 0.0:
        raise ValueError(f"{name} must not be the zero vector")
    return vector / norm


def quaternion_multiply(first: Sequence[float], second: Sequence[float]) -> np.ndarray:
    """Hamilton product ``first * second`` of two ``(x, y, z, w)`` quaternions."""
    x1, y1, z1, w1 = _quaternion(first)
    x2, y2, z2, w2 = _quaternion(second)
    return np.array(
        [
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        ]
    )


def quaternion_from_two_vectors(
    source: Sequence[float] | np.ndarray, target: Sequence[float] | np.ndarray
) -> np.ndarray:
    """Smallest rotation that turns the direction of ``source`` into that of ``target``."""
    v0 = _unit(source, "source")
    v1 = _unit(target, "target")
    c = float(np.dot(v1, v0))
    if c < -1.0 + _EPSILON:
        c = max(c, -1.0)
        _, _, vh = np.linalg.svd(np.vstack((v0, v1)))
        axis = vh[2]
        w2 = (1.0 + c) * 0.5
        vec = axis * math.sqrt(1.0 - w2)
        return np.array([vec[0], vec[1], vec[2], math.sqrt(w2)])
    axis = np.cross(v0, v1)
    s = math.sqrt((1.0 + c) * 2.0)
    vec = axis / s
    return np.array([vec[0], vec[1], vec[2], s * 0.5])


def quaternion_to_matrix(quaternion: Sequence[float] | np.ndarray) -> np.ndarray:
    """3x3 rotation matrix of a unit quaternion."""
    x, y, z, w = _quaternion(quaternion)
    tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
    twx, twy, twz = tx * w, ty * w, tz * w
    txx, txy, txz = tx * x, ty * x, tz * x
    tyy, tyz, tzz = ty * y, tz * y, tz * z
    return np.array(
        [
            [1.0 - (tyy + tzz), txy - twz, txz + twy],
            [txy + twz, 1.0 - (txx + tzz), tyz - twx],
            [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
        ]
    )


def euler_angles_xyz(matrix: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Angles ``(a, b, c)`` with ``matrix == Rx(a) @ Ry(b) @ Rz(c)`` and ``a`` in [0, pi]."""
    m = np.asarray(matrix, dtype=np.float64)
    if m.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
    i, j, k = 0, 1, 2
    first = math.atan2(m[j, k], m[k, k])
    c2 = math.hypot(m[i, i], m[i, j])
    if first > 0:
        first -= math.pi
        second = math.atan2(-m[i, k], -c2)
    else:
        second = math.atan2(-m[i, k], c2)
    s1, c1 = math.sin(first), math.cos(first)
    third = math.atan2(s1 * m[k, i] - c1 * m[j, i], c1 * m[j, j] - s1 * m[k, j])
    return -np.array([first, second, third])


def quaternion_from_yaw(yaw: float) -> np.ndarray:
    """Rotation by ``yaw`` about the z axis."""
    half = yaw / 2.0
    return np.array([0.0, 0.0, math.sin(half), math.cos(half)])


def _identity_quaternion() -> np.ndarray:
    return np.array([0.0, 0.0, 0.0, 1.0])


def _zero_vector() -> np.ndarray:
    return np.zeros(3)


@dataclass(frozen=True, eq=False)
class Transform:
    """Rigid transform: rotate by ``rotation``, then move by ``translation``."""

    translation: np.ndarray = field(default_factory=_zero_vector)
    rotation: np.ndarray = field(default_factory=_identity_quaternion)

    def __post_init__(self) -> None:
        object.__setattr__(self, "translation", _vector3(self.translation, "translation"))
        object.__setattr__(self, "rotation", _quaternion(self.rotation))

    @property
    def matrix(self) -> np.ndarray:
        return quaternion_to_matrix(self.rotation)

    def apply(self, point: Sequence[float] | np.ndarray) -> np.ndarray:
        """Transform a point, or an ``(N, 3)`` array of points."""
        points = np.asarray(point, dtype=np.float64)
        return points @ self.matrix.T + self.translation

    def rotate(self, vector: Sequence[float] | np.ndarray) -> np.ndarray:
        """Rotate a vector, or an ``(N, 3)`` array of vectors, without translating."""
        vectors = np.asarray(vector, dtype=np.float64)
        return vectors @ self.matrix.T

    def rotation_only(self) -> Transform:
        """The same rotation with the translation dropped."""
        return Transform(np.zeros(3), self.rotation.copy())

    def transform_pose(
        self, position: Sequence[float] | np.ndarray, orientation: Sequence[float] | np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Transform a pose given as a position and an orientation quaternion."""
        return self.apply(_vector3(position, "position")), quaternion_multiply(
            self.rotation, orientation
        )


def _points_array(points: PointCloud | Sequence | np.ndarray) -> np.ndarray:
    if isinstance(points, PointCloud):
        return points.flat().astype(np.float64)
    data = np.asarray(points, dtype=np.float64)
    if data.size == 0:
        return data.reshape(0, 3)
    if data.ndim != 2 or data.shape[1] != 3:
        raise ValueError(f"points must have shape (n, 3), got {data.shape}")
    return data


def _within(points: np.ndarray, coefficients: np.ndarray, threshold: float) -> np.ndarray:
    distances = np.abs(points @ coefficients[:3] + coefficients[3])
    return np.flatnonzero(distances < threshold)


def _plane_through(points: np.ndarray, sample: np.ndarray) -> np.ndarray | None:
    p0, p1, p2 = points[sample]
    a, b = p1 - p0, p2 - p0
    normal = np.cross(a, b)
    norm = np.linalg.norm(normal)
    if not np.isfinite(norm) or norm <= _EPSILON * np.linalg.norm(a) * np.linalg.norm(b):
        return None
    normal /= norm
    return np.append(normal, -float(np.dot(normal, p0)))


def _refine_plane(points: np.ndarray, inliers: np.ndarray, model: np.ndarray) -> np.ndarray:
    selected = points[inliers]
    centroid = selected.mean(axis=0)
    centred = selected - centroid
    _, eigenvectors = np.linalg.eigh(centred.T @ centred)
    normal = eigenvectors[:, 0]
    if np.dot(normal, model[:3]) < 0:
        normal = -normal
    return np.append(normal, -float(np.dot(normal, centroid)))


def fit_plane_ransac(
    points: PointCloud | Sequence | np.ndarray,
    distance_threshold: float = 0.1,
    max_iterations: int = 50,
    rng: np.random.Generator | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Fit a plane ``a*x + b*y + c*z + d = 0`` with RANSAC and least-squares refinement.

    Returns the coefficients ``(a, b, c, d)`` with a unit normal, and the
    indices of the points closer to the plane than ``distance_threshold``.
    Raises ``ValueError`` when the points cannot define a plane.
    """
    data = _points_array(points)
    count = len(data)
    if count < 3:
        raise ValueError(f"at least 3 points are needed to fit a plane, got {count}")
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be positive, got {max_iterations}")
    generator = rng if rng is not None else np.random.default_rng()

    log_probability = math.log(1.0 - _RANSAC_PROBABILITY)
    best_model: np.ndarray | None = None
    best_count = -1
    needed = 1.0
    iterations = 0
    skipped = 0
    max_skip = max_iterations * 10
    while iterations < needed and skipped < max_skip:
        sample = generator.choice(count, 3, replace=False)
        model = _plane_through(data, sample)
        if model is None:
            skipped += 1
            continue
        inlier_count = len(_within(data, model, distance_threshold))
        if inlier_count > best_count:
            best_count = inlier_count
            best_model = model
            ratio = inlier_count / count
            no_outliers = 1.0 - ratio**3
            no_outliers = min(max(no_outliers, np.finfo(float).eps), 1.0 - np.finfo(float).eps)
            needed = log_probability / math.log(no_outliers)
        iterations += 1
        if iterations > max_iterations:
            break

    if best_model is None:
        raise ValueError("the points do not span a plane")

    inliers = _within(data, best_model, distance_threshold)
    if len(inliers) > 3:
        best_model = _refine_plane(data, inliers, best_model)
        inliers = _within(data, best_model, distance_threshold)
    return best_model, inliers


def _rpy_matrix(roll: float, pitch: float, yaw: float) -> np.ndarray:
    a, b = math.cos(yaw), math.sin(yaw)
    c, d = math.cos(pitch), math.sin(pitch)
    e, f = math.cos(roll), math.sin(roll)
    return np.array(
        [
            [a * c, a * d * f - b * e, b * f + a * d * e],
            [b * c, a * e + b * d * f, b * d * e - a * f],
            [-d, c * f, c * e],
        ]
    )


def crop_box(
    points: PointCloud | Sequence | np.ndarray,
    minimum: Sequence[float],
    maximum: Sequence[float],
    rotation_rpy: Sequence[float] = (0.0, 0.0, 0.0),
    translation: Sequence[float] = (0.0, 0.0, 0.0),
) -> np.ndarray:
    """Points inside a box, bounds included.

    The box spans ``minimum``..``maximum`` in its own frame, which is rotated by
    roll, pitch and yaw (applied about x, then y, then z) and then moved by
    ``translation``. Points with non-finite coordinates are dropped.
    """
    data = _points_array(points)
    low = _vector3(minimum, "minimum")
    high = _vector3(maximum, "maximum")
    roll, pitch, yaw = _vector3(rotation_rpy, "rotation_rpy")
    offset = _vector3(translation, "translation")

    finite = data[np.all(np.isfinite(data), axis=1)]
    local = (finite - offset) @ _rpy_matrix(roll, pitch, yaw)
    inside = np.all((local >= low) & (local <= high), axis=1)
    return finite[inside]