import math

import numpy as np
import pytest

from holefinder.cloud import PointCloud
from holefinder.detector import DetectionResult, ManholeDetector
from holefinder.geometry import Transform
from holefinder.params import DetectorParams

SIZE = 40
STEP = 0.05


def make_scene(solid=False, stamp=0, scale=1.0):
    rows, cols = np.mgrid[0:SIZE, 0:SIZE]
    x = (cols - 20) * STEP
    z = (rows - 20) * STEP
    y = 3.0 + 0.02 * ((rows + cols) % 2)
    if not solid:
        interior = (rows > 9) & (rows < 28) & (cols > 12) & (cols < 29)
        y = np.where(interior, 10.0, y)
    points = np.stack((x, y, z), axis=2) * scale
    return PointCloud(points, stamp=stamp, frame_id="lidar")


def hole_border():
    points = []
    for col in range(12, 30):
        points += [(col, 9), (col, 28)]
    for row in range(10, 28):
        points += [(12, row), (29, row)]
    return np.array(points)


def identity_lookup(target, source, stamp):
    return Transform()


def missing_lookup(target, source, stamp):
    raise LookupError("no transform")


def make_detector(params=None, lookup=identity_lookup):
    detector = ManholeDetector(params or DetectorParams(), lookup)
    detector.rng = np.random.default_rng(0)
    return detector


def test_requires_transform_lookup():
    with pytest.raises(ValueError):
        ManholeDetector(DetectorParams(), None)


def test_empty_buffer_raises():
    detector = make_detector()
    with pytest.raises(LookupError):
        detector.find_corresponding_cloud(0)
    with pytest.raises(LookupError):
        detector.process_depth_image(np.zeros((4, 4), dtype=np.uint16), 0, "lidar")


def test_buffer_keeps_newest_ten_and_picks_closest():
    detector = make_detector()
    for index in range(12):
        detector.add_cloud(PointCloud(np.zeros((1, 1, 3)), stamp=index * 1000))
    assert detector.find_corresponding_cloud(0).stamp == 2000
    assert detector.find_corresponding_cloud(5400).stamp == 5000
    assert detector.find_corresponding_cloud(5500).stamp == 6000
    assert detector.find_corresponding_cloud(99999).stamp == 11000


def test_add_cloud_rejects_other_types():
    detector = make_detector()
    with pytest.raises(TypeError):
        detector.add_cloud(np.zeros((1, 1, 3)))


def test_missing_transform_gives_no_detection():
    calls = []

    def lookup(target, source, stamp):
        calls.append((target, source, stamp))
        raise LookupError("no transform")

    detector = make_detector(lookup=lookup)
    result = detector.filter_contours([hole_border()], make_scene(stamp=42))
    assert isinstance(result, DetectionResult)
    assert result.transform_found is False
    assert result.centroids == []
    assert calls == [("world", "lidar", 42)]
    assert detector.stable_manholes() == []


def test_open_hole_is_detected():
    detector = make_detector()
    result = detector.filter_contours([hole_border()], make_scene())
    assert result.transform_found
    assert len(result.centroids) == 1
    position, _ = result.centroids[0]
    assert -0.4 < position[0] < 0.45
    assert -0.55 < position[2] < 0.4
    assert abs(position[1] - 3.01) < 0.02
    assert result.contour_points.shape == (72, 4)
    assert np.all(result.contour_points[:, 3] == 100.0)


def test_detection_becomes_stable_after_enough_sightings():
    detector = make_detector()
    cloud = make_scene()
    results = [detector.filter_contours([hole_border()], cloud) for _ in range(5)]
    assert all(r.new_stable == [] for r in results[:4])
    assert len(results[4].new_stable) == 1
    stable = detector.stable_manholes()
    assert len(stable) == 1
    assert stable[0].id == 0
    assert abs(abs(stable[0].mean_yaw) - math.pi / 2) < 0.1
    assert len(results[4].detection_attempt_poses) == 1
    assert len(results[3].detection_attempt_poses) == 0


def test_reset_detection_poses_and_re_evaluate():
    detector = make_detector()
    cloud = make_scene()
    for _ in range(5):
        detector.filter_contours([hole_border()], cloud)
    assert len(detector.detection_attempt_poses) == 1
    assert detector.reset_detection_poses() is True
    assert detector.detection_attempt_poses == []
    detector.re_evaluate(detector.stable_manholes()[0].id)
    assert detector.stable_manholes() == []


def test_solid_wall_is_rejected():
    detector = make_detector()
    result = detector.filter_contours([hole_border()], make_scene(solid=True))
    assert result.centroids == []
    assert len(result.contour_points) == 0


def test_steep_normal_is_rejected():
    half = math.sqrt(0.5)

    def tilted(target, source, stamp):
        return Transform(rotation=(half, 0.0, 0.0, half))

    detector = make_detector(lookup=tilted)
    result = detector.filter_contours([hole_border()], make_scene())
    assert result.transform_found
    assert result.centroids == []


def test_short_contour_is_ignored():
    detector = make_detector()
    result = detector.filter_contours([hole_border()[:3]], make_scene())
    assert result.centroids == []
    assert detector.stable_manholes() == []


def test_points_too_close_are_ignored():
    detector = make_detector()
    result = detector.filter_contours([hole_border()], make_scene(scale=0.01))
    assert result.centroids == []
    assert len(result.contour_points) == 0


def test_odometry_reported_near_known_opening():
    detector = make_detector()
    cloud = make_scene()
    first = detector.filter_contours([hole_border()], cloud)
    assert first.detection_odometry == []
    odometry = {"frame": "odom"}
    detector.set_odometry(odometry)
    detector.manhole_position = first.centroids[0][0]
    second = detector.filter_contours([hole_border()], cloud)
    assert second.detection_odometry == [odometry]


def square_image():
    image = np.full((SIZE, SIZE), 3000, dtype=np.uint16)
    image[10:28, 13:29] = 10000
    return image


def test_process_depth_image_draws_contours():
    detector = make_detector()
    detector.add_cloud(make_scene(stamp=0))
    result = detector.process_depth_image(square_image(), 0, "lidar")
    assert result.frame_id == "lidar"
    assert result.stamp == 0
    assert result.frame_mask is None
    assert result.contour_image.shape == (SIZE, SIZE, 3)
    assert len(result.contours) > 0
    for contour in result.contours:
        assert np.all(result.contour_image[contour[:, 1], contour[:, 0], 1] == 255)


def test_process_depth_image_with_cropped_rows():
    params = DetectorParams(crop_out_rows=True, indices_to_crop=(0, 1))
    detector = make_detector(params)
    detector.add_cloud(make_scene(stamp=0))
    result = detector.process_depth_image(square_image(), 0, "lidar")
    assert len(result.contours) > 0
    for contour in result.contours:
        assert contour[:, 1].min() >= 2
    assert result.frame_mask.shape == (SIZE, SIZE)
    assert result.frame_mask[0, 0] == 255
    assert result.frame_mask[15, 20] == 0