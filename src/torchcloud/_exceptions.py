"""Point cloud exceptions."""

__all__ = [
    "InvalidArgumentError",
    "OrganizedOnlyOperationError",
    "PointCloudError",
    "ShapeMismatchError",
]


class PointCloudError(ValueError):
    """Base exception for point cloud errors."""

    pass


class ShapeMismatchError(PointCloudError):
    """Raised when an array has the wrong shape.

    This occurs when:
    - Coordinates are not shaped (n, 3) or (rows, cols, 3)
    - Color or normal arrays do not match the coordinate shape
    """

    pass


class InvalidArgumentError(PointCloudError):
    """Raised when a query argument is malformed.

    This occurs when:
    - The query point is not a finite 3-vector
    - k is not a positive integer
    - The radius is negative or not finite
    - A region of interest has min > max on some axis
    - Selection indices are out of range
    """

    pass


class OrganizedOnlyOperationError(PointCloudError):
    """Raised when a row/column selection is made on an unorganized cloud."""

    pass
