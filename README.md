# holefinder

`holefinder` finds manhole-like openings in the scans of a rotating lidar.
It works on an organised point cloud (one row per laser ring) and on the
depth image made from it:

1. the depth image is stretched to 8 bits and run through a Canny edge
   detector;
2. outer borders of the edge components are traced, and those whose enclosed
   area exceeds their perimeter are kept as closed contours;
3. every contour pixel is mapped to its 3-D point, with a search among eight
   neighbours `slack` pixels away for a point clearly nearer to the sensor;
4. a plane is fitted to the contour points with RANSAC, and contours whose
   plane is too steep, whose extent is outside the configured size limits, or
   whose centre is not free of points are dropped;
5. the remaining centroids are moved into the world frame and clustered over
   time, so that an opening only counts as stable once it has been seen often
   enough.

The package depends only on NumPy.

## Modules

| Module | What it holds |
| --- | --- |
| `holefinder.params` | `DetectorParams`, every tuning value with its default; `DetectorParams.from_mapping` builds one from a plain dictionary |
| `holefinder.cloud` | `PointCloud`, an organised cloud with `at(col, row)`, `ranges()` and `flat()` |
| `holefinder.depth` | `cloud_to_depth_image` and `scale_to_uint8` |
| `holefinder.contours` | `detect_edges`, `find_contours`, `contour_area`, `arc_length`, `detect_closed_contours`, `crop_rows`, `reindex_contours`, `draw_contours` |
| `holefinder.geometry` | `Transform`, quaternion and Euler-angle helpers, `fit_plane_ransac`, `crop_box` |
| `holefinder.yaw` | `truncate_yaw`, `correct_detection_yaw`, `correct_detection_yaw_towards` and `mean_yaw` for undirected headings |
| `holefinder.tracking` | `ManholeDetection` and `DetectionTracker`, which clusters detections over time |
| `holefinder.detector` | `ManholeDetector`, which ties the steps together, and `DetectionResult` |

## Making a depth image

```python
import numpy as np
from holefinder.depth import cloud_to_depth_image

points = np.random.default_rng(0).normal(size=(64, 1024, 3))
image = cloud_to_depth_image(points, max_range=20.0)
```

Ranges are clipped at `max_range` and mapped linearly onto 0–255, truncating
towards zero. `scale_to_uint8` instead stretches any single-channel image so
that its minimum becomes 0 and its maximum 255.

## Running the detector

```python
from holefinder.params import DetectorParams
from holefinder.detector import ManholeDetector
from holefinder.geometry import Transform

params = DetectorParams.from_mapping({"cluster_radius": 2.0, "slack": 2})


def transform_lookup(target_frame, source_frame, stamp):
    # Return the Transform from source_frame into target_frame ("world")
    # at time stamp, or None (or raise LookupError) when it is not known.
    return Transform()


detector = ManholeDetector(params, transform_lookup)
detector.add_cloud(cloud)  # a holefinder.cloud.PointCloud with stamp and frame_id
result = detector.process_depth_image(raw_depth_image, stamp, frame_id)

for manhole in detector.stable_manholes():
    print(manhole.id, manhole.mean_pos, manhole.mean_yaw)
```

The detector keeps the ten most recent clouds and pairs each depth image with
the cloud whose time stamp (in nanoseconds) is closest; with no cloud buffered,
`process_depth_image` raises `LookupError`. When no transform into the world
frame is available, the returned `DetectionResult` has `transform_found` set to
false and no detections are made.

A `DetectionResult` carries the contours found, the world-frame centroids of
accepted openings, the tracks that became stable in this frame (`new_stable`)
and all stable tracks (`stable`), the inlier points with an intensity column,
the contour image, and, when `crop_out_rows` is set, a mask of zero-depth
pixels.

`set_odometry(odometry)` stores an odometry value; it is reported in
`detection_odometry` whenever an accepted opening lies within 0.4 of
`manhole_position`. `reset_detection_poses()` clears the list of sensor poses
at which the first stable opening was seen again, and
`re_evaluate(detection_id)` puts a stable opening back on probation.

## Tracking on its own

```python
from holefinder.tracking import DetectionTracker

tracker = DetectionTracker(cluster_radius=2.0, buffer_size=10, min_detections=4)
newly_stable = tracker.update([((1.0, 2.0, 0.5), 0.1)])
```

`update` takes `(position, yaw)` pairs from one scan and returns the tracks
that became stable in that update; a track is stable once it holds more than
`min_detections` detections. `stable_detections()` lists every stable track.
Unstable tracks not seen in the last `buffer_size` updates are dropped. Yaw is
treated as an undirected heading, so 0 and π count as the same orientation.

## What the package does not do

`holefinder` is a library. It has no command-line program and no message
transport: it does not subscribe to sensor topics, look up transforms or
publish results by itself. The caller feeds it clouds and depth images and
supplies the transform lookup.

## Tests

The test suite uses pytest and is installed with the `test` extra.