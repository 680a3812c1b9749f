"""Organised point clouds as produced by a spinning lidar."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(eq=False)
class PointCloud:
    """Points laid out as rows (laser rings) by columns, each an (x, y, z) triple.

    ``stamp`` is the acquisition time in nanoseconds. A flat ``(N, 3)`` array
    is accepted and stored as a single row.
    """

    points: np.ndarray
    stamp: int = 0
    frame_id: str = ""

    def __post_init__(self) -> None:
        points = np.asarray(self.points, dtype=np.float32)
        if points.ndim == 2 and points.shape[1] == 3:
            points = points.reshape(1, -1, 3)
        if points.ndim != 3 or points.shape[2] != 3:
            raise ValueError(
                f"points must have shape (height, width, 3) or (n, 3), got {points.shape}"
            )
        self.points = points

    @property
    def height(self) -> int:
        return self.points.shape[0]

    @property
    def width(self) -> int:
        return self.points.shape[1]

    def __len__(self) -> int:
        return self.height * self.width

    def at(self, col: int, row: int) -> np.ndarray:
        """Return a copy of the point at column ``col`` of row ``row``."""
        if not (0 <= row < self.height and 0 <= col < self.width):
            raise IndexError(
                f"point ({col}, {row}) outside cloud of {self.width}x{self.height}"
            )
        return self.points[row, col].copy()

    def ranges(self) -> np.ndarray:
        """Euclidean distance of every point from the sensor, shape (height, width)."""
        return np.sqrt(np.sum(self.points * self.points, axis=2))

    def flat(self) -> np.ndarray:
        """All points as an ``(N, 3)`` array in row-major order."""
        return self.points.reshape(-1, 3)