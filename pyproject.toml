[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "holefinder"
version = "0.1.0"
description = "Detect manhole-like openings in lidar depth images and organised point clouds"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "lidar",
    "point cloud",
    "depth image",
    "contour detection",
    "plane fitting",
    "robotics",
    "manhole detection",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["holefinder"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
