"""torchcloud: point clouds with k-d tree neighbor search for PyTorch."""

from . import (
    point_cloud,
    space_partitioning,
)
from ._exceptions import (
    InvalidArgumentError,
    OrganizedOnlyOperationError,
    PointCloudError,
    ShapeMismatchError,
)
from .point_cloud import PointCloud

__all__ = [
    "InvalidArgumentError",
    "OrganizedOnlyOperationError",
    "PointCloud",
    "PointCloudError",
    "ShapeMismatchError",
    "point_cloud",
    "space_partitioning",
]

__version__ = "0.1.0"
