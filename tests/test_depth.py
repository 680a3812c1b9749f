import numpy as np
import pytest

from holefinder.cloud import PointCloud
from holefinder.depth import cloud_to_depth_image, scale_to_uint8


def _row(*distances):
    return np.array([[[d, 0.0, 0.0] for d in distances]], dtype=np.float32)


def test_image_shape_matches_cloud():
    image = cloud_to_depth_image(np.zeros((4, 7, 3)))
    assert image.shape == (4, 7)
    assert image.dtype == np.uint8
    assert not image.any()


def test_accepts_point_cloud():
    cloud = PointCloud(_row(0.0, 20.0))
    np.testing.assert_array_equal(cloud_to_depth_image(cloud), [[0, 255]])


def test_far_points_saturate():
    image = cloud_to_depth_image(_row(20.0, 30.0, 1000.0))
    np.testing.assert_array_equal(image, [[255, 255, 255]])


def test_values_are_truncated():
    assert cloud_to_depth_image(_row(10.0))[0, 0] == 127


def test_monotonic_in_range():
    image = cloud_to_depth_image(_row(0.0, 5.0, 10.0, 15.0, 20.0, 25.0))[0]
    assert image.tolist() == [0, 63, 127, 191, 255, 255]
    assert sorted(image.tolist()) == image.tolist()


def test_custom_max_range():
    image = cloud_to_depth_image(_row(5.0, 0.0), max_range=5.0)
    np.testing.assert_array_equal(image, [[255, 0]])


def test_nan_points_map_to_zero():
    data = _row(np.nan, 20.0)
    np.testing.assert_array_equal(cloud_to_depth_image(data), [[0, 255]])


@pytest.mark.parametrize("max_range", [0.0, -1.0])
def test_bad_max_range(max_range):
    with pytest.raises(ValueError):
        cloud_to_depth_image(_row(1.0), max_range=max_range)


def test_scale_stretches_to_full_range():
    image = np.array([[100, 200], [300, 1100]], dtype=np.uint16)
    scaled = scale_to_uint8(image)
    assert scaled.dtype == np.uint8
    assert scaled.min() == 0
    assert scaled.max() == 255


def test_scale_preserves_order():
    image = np.array([[5, 900, 40, 3000, 7]], dtype=np.uint16)
    scaled = scale_to_uint8(image)[0]
    assert list(np.argsort(image[0], kind="stable")) == list(np.argsort(scaled, kind="stable"))


@pytest.mark.parametrize("value, expected", [(0, 0), (1, 128), (5, 255)])
def test_scale_constant_image(value, expected):
    image = np.full((2, 3), value, dtype=np.uint16)
    np.testing.assert_array_equal(scale_to_uint8(image), np.full((2, 3), expected))


def test_scale_rejects_non_2d():
    with pytest.raises(ValueError):
        scale_to_uint8(np.zeros((2, 2, 3), dtype=np.uint16))


def test_scale_rejects_empty():
    with pytest.raises(ValueError):
        scale_to_uint8(np.zeros((0, 4), dtype=np.uint16))