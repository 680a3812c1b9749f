"""Detection of manhole-like openings in lidar depth images and point clouds."""

__version__ = "0.1.0"

__all__ = [
    "cloud",
    "contours",
    "depth",
    "detector",
    "geometry",
    "params",
    "tracking",
    "yaw",
]