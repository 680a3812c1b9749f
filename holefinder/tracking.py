"""Clustering of repeated opening detections into stable tracks."""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np

from .yaw import mean_yaw

_ID_STEP = 59
_UNSET_YAW = -5.0 * math.pi


@dataclass(eq=False)
class ManholeDetection:
    """A tracked opening: its detections, recent hit history and averaged pose.

    ``detection_buffer`` holds 1 for an update in which the opening was seen
    and 0 otherwise, newest first. ``detections`` holds ``(x, y, z, yaw)``.
    """

    id: int
    mean_pos: np.ndarray
    mean_yaw: float
    seen_sufficiently: bool = False
    detections: list[tuple[float, float, float, float]] = field(default_factory=list)
    detection_buffer: deque[int] = field(default_factory=deque)

    def recompute_mean(self) -> None:
        """Average the stored detections into ``mean_pos`` and ``mean_yaw``."""
        if not self.detections:
            self.mean_pos = np.full(3, np.nan)
            self.mean_yaw = _UNSET_YAW
            return
        history = np.array(self.detections, dtype=np.float64)
        self.mean_pos = history[:, :3].mean(axis=0)
        self.mean_yaw = mean_yaw(history[:, 3])


class DetectionTracker:
    """Groups detections lying within ``cluster_radius`` of a track's mean.

    A track becomes stable once it has more than ``min_detections``
    detections. Unstable tracks not seen within the last ``buffer_size``
    updates are forgotten.
    """

    def __init__(self, cluster_radius: float, buffer_size: int, min_detections: int) -> None:
        self.cluster_radius = cluster_radius
        self.buffer_size = buffer_size
        self.min_detections = min_detections
        self._tracks: list[ManholeDetection] = []
        self._next_id = 0

    @property
    def tracks(self) -> list[ManholeDetection]:
        """All current tracks, stable or not."""
        return list(self._tracks)

    def update(
        self, detections: Iterable[tuple[Sequence[float] | np.ndarray, float]]
    ) -> list[ManholeDetection]:
        """Add ``(position, yaw)`` detections; return the tracks that just became stable."""
        for position, yaw in detections:
            point = np.asarray(position, dtype=np.float64)
            if point.shape != (3,):
                raise ValueError(f"position must have three components, got shape {point.shape}")
            self._assign(point, float(yaw))
        return self._refresh()

    def stable_detections(self) -> list[ManholeDetection]:
        """Tracks that have been seen often enough to count as real openings."""
        return [track for track in self._tracks if track.seen_sufficiently]

    def re_evaluate(self, detection_id: int) -> None:
        """Forget the history of a track so that it must prove itself again."""
        for track in self._tracks:
            if track.id == detection_id:
                track.seen_sufficiently = False
                track.detections.clear()
                return

    def _closest(self, point: np.ndarray) -> ManholeDetection | None:
        closest = None
        best = math.inf
        for track in self._tracks:
            distance = float(np.linalg.norm(point - track.mean_pos))
            if distance < self.cluster_radius and distance < best:
                best = distance
                closest = track
        return closest

    def _trim(self, track: ManholeDetection) -> None:
        if len(track.detection_buffer) >= self.buffer_size:
            track.detection_buffer.pop()

    def _assign(self, point: np.ndarray, yaw: float) -> None:
        limit = self.min_detections * 5
        entry = (float(point[0]), float(point[1]), float(point[2]), yaw)
        closest = self._closest(point)
        if closest is not None:
            closest.detection_buffer.appendleft(1)
            closest.detections.append(entry)
            if len(closest.detection_buffer) > limit:
                closest.detection_buffer.popleft()
            if len(closest.detections) > limit:
                del closest.detections[0]
            for track in self._tracks:
                if track is not closest:
                    track.detection_buffer.appendleft(0)
                self._trim(track)
            return

        for track in self._tracks:
            track.detection_buffer.appendleft(0)
            self._trim(track)
        self._tracks.append(
            ManholeDetection(
                id=self._next_id,
                mean_pos=point.copy(),
                mean_yaw=yaw,
                detections=[entry],
                detection_buffer=deque([1]),
            )
        )
        self._next_id += _ID_STEP

    def _refresh(self) -> list[ManholeDetection]:
        kept: list[ManholeDetection] = []
        newly_stable: list[ManholeDetection] = []
        for track in self._tracks:
            if track.seen_sufficiently:
                track.recompute_mean()
                kept.append(track)
                continue
            became_stable = len(track.detections) > self.min_detections
            if became_stable:
                track.seen_sufficiently = True
            if 1 in track.detection_buffer or track.seen_sufficiently:
                track.recompute_mean()
                kept.append(track)
                if became_stable:
                    newly_stable.append(track)
        self._tracks = kept
        return newly_stable