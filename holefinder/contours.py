"""Edge detection, closed-contour extraction and contour utilities for depth images.

Contours are ``(n, 2)`` integer arrays of ``(x, y)`` pixel coordinates, with
``x`` the column and ``y`` the row.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

import numpy as np

_TAN_22_5 = math.tan(math.radians(22.5))
_TAN_67_5 = math.tan(math.radians(67.5))

# Eight neighbours, counter-clockwise as seen on screen, starting east.
_DIRECTIONS: tuple[tuple[int, int], ...] = (
    (0, 1),
    (-1, 1),
    (-1, 0),
    (-1, -1),
    (0, -1),
    (1, -1),
    (1, 0),
    (1, 1),
)
_EAST = 0


def _as_image(image: np.ndarray) -> np.ndarray:
    data = np.asarray(image)
    if data.ndim != 2:
        raise ValueError(f"expected a single-channel 2-D image, got shape {data.shape}")
    if data.size == 0:
        raise ValueError("image is empty")
    return data


def _as_points(contour: Sequence | np.ndarray, dtype: type = float) -> np.ndarray:
    points = np.asarray(contour, dtype=dtype)
    if points.size == 0:
        return points.reshape(0, 2)
    return points.reshape(-1, 2)


def detect_edges(
    image: np.ndarray, low_threshold: float, high_threshold: float
) -> np.ndarray:
    """Canny edge detection with a 3x3 Sobel aperture and L1 gradient magnitude.

    Returns a ``uint8`` image holding 255 on edge pixels and 0 elsewhere.
    The thresholds are swapped if given in the wrong order.
    """
    data = _as_image(image).astype(np.float64)
    low, high = float(low_threshold), float(high_threshold)
    if low > high:
        low, high = high, low
    low, high = math.floor(low), math.floor(high)

    padded = np.pad(data, 1, mode="edge")
    left_col = padded[:-2, :-2] + 2.0 * padded[1:-1, :-2] + padded[2:, :-2]
    right_col = padded[:-2, 2:] + 2.0 * padded[1:-1, 2:] + padded[2:, 2:]
    top_row = padded[:-2, :-2] + 2.0 * padded[:-2, 1:-1] + padded[:-2, 2:]
    bottom_row = padded[2:, :-2] + 2.0 * padded[2:, 1:-1] + padded[2:, 2:]
    gx = right_col - left_col
    gy = bottom_row - top_row

    abs_x, abs_y = np.abs(gx), np.abs(gy)
    magnitude = abs_x + abs_y

    framed = np.pad(magnitude, 1)
    centre = framed[1:-1, 1:-1]
    west, east = framed[1:-1, :-2], framed[1:-1, 2:]
    north, south = framed[:-2, 1:-1], framed[2:, 1:-1]
    north_west, south_east = framed[:-2, :-2], framed[2:, 2:]
    north_east, south_west = framed[:-2, 2:], framed[2:, :-2]

    horizontal = abs_y < abs_x * _TAN_22_5
    vertical = ~horizontal & (abs_y > abs_x * _TAN_67_5)
    diagonal = ~horizontal & ~vertical
    same_sign = (gx < 0) == (gy < 0)

    is_maximum = (
        (horizontal & (centre > west) & (centre >= east))
        | (vertical & (centre > north) & (centre >= south))
        | (diagonal & same_sign & (centre > north_west) & (centre > south_east))
        | (diagonal & ~same_sign & (centre > north_east) & (centre > south_west))
    )
    candidate = is_maximum & (centre > low)
    edges = candidate & (centre > high)

    rows, cols = edges.shape
    stack = [(int(r), int(c)) for r, c in zip(*np.nonzero(edges))]
    while stack:
        r, c = stack.pop()
        for dr, dc in _DIRECTIONS:
            nr, nc = r + dr, c + dc
            if 0 <= nr < rows and 0 <= nc < cols and candidate[nr, nc] and not edges[nr, nc]:
                edges[nr, nc] = True
                stack.append((nr, nc))

    return np.where(edges, 255, 0).astype(np.uint8)


def _direction_between(origin: tuple[int, int], target: tuple[int, int]) -> int:
    return _DIRECTIONS.index((target[0] - origin[0], target[1] - origin[1]))


def _step(point: tuple[int, int], direction: int) -> tuple[int, int]:
    dr, dc = _DIRECTIONS[direction]
    return point[0] + dr, point[1] + dc


def _follow_border(
    labels: np.ndarray,
    start: tuple[int, int],
    outside: tuple[int, int],
    border_id: int,
) -> list[tuple[int, int]]:
    """Trace one border, labelling its pixels, and return its (row, col) points."""
    first_direction = _direction_between(start, outside)
    first_neighbour = None
    for turn in range(8):
        candidate = _step(start, (first_direction - turn) % 8)
        if labels[candidate] != 0:
            first_neighbour = candidate
            break
    if first_neighbour is None:
        labels[start] = -border_id
        return [start]

    previous, current = first_neighbour, start
    points: list[tuple[int, int]] = []
    while True:
        points.append(current)
        back = _direction_between(current, previous)
        east_is_background = False
        following = previous
        for turn in range(1, 9):
            direction = (back + turn) % 8
            following = _step(current, direction)
            if labels[following] != 0:
                break
            if direction == _EAST:
                east_is_background = True
        if east_is_background:
            labels[current] = -border_id
        elif labels[current] == 1:
            labels[current] = border_id
        if following == start and current == first_neighbour:
            return points
        previous, current = current, following


def find_contours(edges: np.ndarray) -> list[np.ndarray]:
    """Outer borders of all 8-connected components of non-zero pixels.

    Every boundary pixel is listed (no chain approximation). Contours come in
    the raster order of their first pixel; borders of holes are traced but not
    returned, while components lying inside holes are.
    """
    data = _as_image(edges)
    labels = np.pad((data != 0).astype(np.int64), 1)
    contours: list[np.ndarray] = []
    border_id = 1
    for row, col in zip(*np.nonzero(labels)):
        pixel = (int(row), int(col))
        value = labels[pixel]
        if value == 1 and labels[pixel[0], pixel[1] - 1] == 0:
            outer, outside = True, (pixel[0], pixel[1] - 1)
        elif value >= 1 and labels[pixel[0], pixel[1] + 1] == 0:
            outer, outside = False, (pixel[0], pixel[1] + 1)
        else:
            continue
        border_id += 1
        points = _follow_border(labels, pixel, outside, border_id)
        if outer:
            rows_cols = np.array(points, dtype=np.int64)
            contours.append(rows_cols[:, ::-1] - 1)
    return contours


def contour_area(contour: Sequence | np.ndarray) -> float:
    """Unsigned area enclosed by the polygon through the contour's points."""
    points = _as_points(contour)
    if len(points) < 3:
        return 0.0
    x, y = points[:, 0], points[:, 1]
    return float(0.5 * abs(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y)))


def arc_length(contour: Sequence | np.ndarray) -> float:
    """Perimeter of the closed polygon through the contour's points."""
    points = _as_points(contour)
    if len(points) < 2:
        return 0.0
    segments = np.roll(points, -1, axis=0) - points
    return float(np.sum(np.hypot(segments[:, 0], segments[:, 1])))


def detect_closed_contours(image: np.ndarray, low_threshold: float) -> list[np.ndarray]:
    """Contours of the image's edges whose enclosed area exceeds their perimeter.

    Edges are found with a high threshold of three times ``low_threshold``.
    """
    edges = detect_edges(image, low_threshold, low_threshold * 3)
    return [
        contour
        for contour in find_contours(edges)
        if contour_area(contour) > arc_length(contour)
    ]


def crop_rows(image: np.ndarray, crop_start: int, crop_end: int) -> np.ndarray:
    """Remove rows ``crop_start`` through ``crop_end``, both included."""
    data = np.asarray(image)
    if data.ndim < 2:
        raise ValueError(f"expected an image, got shape {data.shape}")
    rows = data.shape[0]
    if not 0 <= crop_start <= crop_end < rows:
        raise ValueError(
            f"cannot crop rows {crop_start}..{crop_end} from an image of {rows} rows"
        )
    return np.concatenate((data[:crop_start], data[crop_end + 1 :]), axis=0)


def reindex_contours(
    contours: Iterable[Sequence | np.ndarray], crop_start: int, crop_end: int
) -> list[np.ndarray]:
    """Map contours found in a row-cropped image back to the uncropped image."""
    offset = crop_end - crop_start + 1
    result = []
    for contour in contours:
        points = _as_points(contour, dtype=np.int64).copy()
        points[points[:, 1] >= crop_start, 1] += offset
        result.append(points)
    return result


def draw_contours(
    image: np.ndarray, contours: Sequence[Sequence | np.ndarray]
) -> np.ndarray:
    """Return a BGR copy of ``image`` with each contour's pixels coloured.

    Contour ``i`` of ``n`` gets the colour (255*i/n, 255, 255*(1-i/n)).
    A single-channel image is first expanded to three channels.
    """
    data = np.asarray(image)
    if data.ndim == 2:
        canvas = np.repeat(data[:, :, np.newaxis], 3, axis=2)
    elif data.ndim == 3 and data.shape[2] == 3:
        canvas = data.copy()
    else:
        raise ValueError(f"expected a grey or BGR image, got shape {data.shape}")

    height, width = canvas.shape[:2]
    total = len(contours)
    for index, contour in enumerate(contours):
        fraction = index / total
        colour = (int(fraction * 255), 255, int((1 - fraction) * 255))
        points = _as_points(contour, dtype=np.int64)
        if len(points) == 0:
            continue
        xs, ys = points[:, 0], points[:, 1]
        if xs.min() < 0 or ys.min() < 0 or xs.max() >= width or ys.max() >= height:
            raise IndexError(f"contour {index} lies outside a {width}x{height} image")
        canvas[ys, xs] = colour
    return canvas