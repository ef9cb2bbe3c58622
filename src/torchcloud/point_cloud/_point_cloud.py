"""Point cloud container with lazily indexed neighbor queries."""

from __future__ import annotations

from typing import Optional, Tuple, Union

import torch
from torch import Tensor

from .._exceptions import (
    InvalidArgumentError,
    OrganizedOnlyOperationError,
    ShapeMismatchError,
)
from ..space_partitioning import KdTree
from ._search import (
    BatchedNeighborSearchResult,
    NeighborSearchResult,
    find_nearest_neighbors,
    find_nearest_neighbors_batched,
    find_neighbors_in_radius,
    find_points_in_roi,
)
from ._search_options import SearchOptions
from ._spatial_index import SpatialIndexCache

_AXES = {"x": 0, "y": 1, "z": 2}


def _as_location(location) -> Tensor:
    # The cloud owns its coordinates. A buffer shared with the caller could
    # change without bumping the version counter the index is keyed on.
    if isinstance(location, Tensor):
        location = location.clone(memory_format=torch.contiguous_format)
    else:
        location = torch.tensor(location)
    if not location.is_floating_point():
        location = location.to(torch.get_default_dtype())
    if location.dim() not in (2, 3) or location.size(-1) != 3:
        raise ShapeMismatchError(
            f"PointCloud: location must have shape (n, 3) or (rows, cols, 3), "
            f"got {tuple(location.shape)}"
        )
    return location.contiguous()


def _as_color(color, location: Tensor) -> Optional[Tensor]:
    if color is None:
        return None
    if isinstance(color, Tensor):
        if color.dtype != torch.uint8:
            raise InvalidArgumentError(
                f"PointCloud: color must be uint8, got {color.dtype}"
            )
        color = color.clone()
    else:
        color = torch.tensor(color)
        if color.numel() > 0:
            if color.is_floating_point() or color.is_complex() or (
                color.dtype == torch.bool
            ):
                raise InvalidArgumentError(
                    f"PointCloud: color must hold integers in [0, 255], "
                    f"got {color.dtype}"
                )
            if color.min() < 0 or color.max() > 255:
                raise InvalidArgumentError(
                    f"PointCloud: color must hold integers in [0, 255], "
                    f"got range [{int(color.min())}, {int(color.max())}]"
                )
        color = color.to(torch.uint8)
    return _match_shape(color.to(location.device), location, "color")


def _as_normal(normal, location: Tensor) -> Optional[Tensor]:
    if normal is None:
        return None
    if isinstance(normal, Tensor):
        normal = normal.to(location.device).clone()
    else:
        normal = torch.tensor(normal, device=location.device)
    normal = _match_shape(normal, location, "normal")
    if normal is None:
        return None
    return normal.to(location.dtype)


def _match_shape(value: Tensor, location: Tensor, name: str) -> Optional[Tensor]:
    if value.shape == location.shape:
        return value.contiguous()
    if value.numel() == 0:
        return None
    raise ShapeMismatchError(
        f"PointCloud: {name} shape {tuple(value.shape)} does not match "
        f"location shape {tuple(location.shape)}"
    )


def _as_indices(indices, count: int, name: str, device) -> Tensor:
    indices = torch.as_tensor(indices, device=device)
    if indices.numel() == 0:
        return indices.reshape(0).to(torch.int64)

    if indices.dtype == torch.bool:
        if indices.shape != (count,):
            raise InvalidArgumentError(
                f"select: boolean {name} must have shape ({count},), "
                f"got {tuple(indices.shape)}"
            )
        return torch.nonzero(indices).squeeze(-1)

    if indices.is_floating_point() or indices.is_complex():
        raise InvalidArgumentError(
            f"select: {name} must be integers, got {indices.dtype}"
        )
    if indices.dim() > 1:
        raise InvalidArgumentError(
            f"select: {name} must be a vector, got shape {tuple(indices.shape)}"
        )
    indices = indices.reshape(-1).to(torch.int64)
    if indices.min() < 0 or indices.max() >= count:
        raise InvalidArgumentError(
            f"select: {name} must be in [0, {count}), "
            f"got range [{int(indices.min())}, {int(indices.max())}]"
        )
    return indices


class PointCloud:
    """A set of 3-D points with optional per-point color and normal.

    A PointCloud is a value: nothing on it mutates in place, and every
    selection returns a new object. The constructor copies its inputs, so
    later edits to the caller's arrays do not reach the cloud. The k-d tree
    used for large queries is built on first use and cached with the
    coordinate buffer.

    Parameters
    ----------
    location : Tensor, shape (n, 3) or (rows, cols, 3)
        Point coordinates. The three-dimensional form is an organized
        (grid) cloud, such as one back-projected from a depth image; its
        points are numbered in row-major order. Integer input is converted
        to the default floating dtype.
    color : Tensor, optional
        ``uint8`` RGB values with the same shape as `location`.
    normal : Tensor, optional
        Normal vectors with the same shape as `location`, cast to the
        location dtype.

    Raises
    ------
    ShapeMismatchError
        If `location` is not (n, 3) or (rows, cols, 3), or if `color` or
        `normal` do not have the shape of `location`.
    InvalidArgumentError
        If `color` is a tensor with a dtype other than ``uint8``.

    Notes
    -----
    Points whose coordinates contain NaN or infinity are kept. They are
    skipped by neighbor queries and by :meth:`bounds`, and are dropped by
    :meth:`remove_invalid_points`.

    Examples
    --------
    >>> cloud = PointCloud(torch.rand(1000, 3))
    >>> cloud.count
    1000
    >>> indices, distances = cloud.find_nearest_neighbors([0.5, 0.5, 0.5], 8)
    >>> subset = cloud.select(indices)
    """

    def __init__(
        self,
        location,
        *,
        color=None,
        normal=None,
    ):
        location = _as_location(location)
        self._location = location
        self._color = _as_color(color, location)
        self._normal = _as_normal(normal, location)
        self._index = SpatialIndexCache()

    @classmethod
    def _from_validated(
        cls,
        location: Tensor,
        color: Optional[Tensor],
        normal: Optional[Tensor],
    ) -> "PointCloud":
        cloud = cls.__new__(cls)
        cloud._location = location
        cloud._color = color
        cloud._normal = normal
        cloud._index = SpatialIndexCache()
        return cloud

    @classmethod
    def _with_attributes(
        cls,
        source: "PointCloud",
        color: Optional[Tensor],
        normal: Optional[Tensor],
    ) -> "PointCloud":
        cloud = cls.__new__(cls)
        cloud._location = source._location
        cloud._color = color
        cloud._normal = normal
        cloud._index = source._index
        return cloud

    def __getstate__(self):
        return {
            "location": self._location,
            "color": self._color,
            "normal": self._normal,
        }

    def __setstate__(self, state):
        self._location = state["location"]
        self._color = state["color"]
        self._normal = state["normal"]
        self._index = SpatialIndexCache()

    def __repr__(self) -> str:
        return (
            f"PointCloud(count={self.count}, organized={self.is_organized}, "
            f"color={self._color is not None}, "
            f"normal={self._normal is not None}, dtype={self.dtype})"
        )

    @property
    def location(self) -> Tensor:
        return self._location

    @property
    def color(self) -> Optional[Tensor]:
        return self._color

    @property
    def normal(self) -> Optional[Tensor]:
        return self._normal

    @property
    def count(self) -> int:
        """Number of points (rows * cols for an organized cloud)."""
        return self._location.numel() // 3

    @property
    def is_organized(self) -> bool:
        return self._location.dim() == 3

    @property
    def grid_shape(self) -> Optional[Tuple[int, int]]:
        """(rows, cols) of an organized cloud, otherwise None."""
        if not self.is_organized:
            return None
        return self._location.size(0), self._location.size(1)

    @property
    def dtype(self) -> torch.dtype:
        return self._location.dtype

    @property
    def device(self) -> torch.device:
        return self._location.device

    @property
    def x_limits(self) -> Tensor:
        return self.bounds("x")

    @property
    def y_limits(self) -> Tensor:
        return self.bounds("y")

    @property
    def z_limits(self) -> Tensor:
        return self.bounds("z")

    @property
    def _points(self) -> Tensor:
        """Coordinates as (count, 3), a view of `location`."""
        return self._location.reshape(-1, 3)

    def bounds(self, axis: Union[int, str]) -> Tensor:
        """Range of one coordinate over the finite points.

        Parameters
        ----------
        axis : int or str
            0, 1, 2 or "x", "y", "z".

        Returns
        -------
        Tensor
            ``[min, max]`` with shape (2,), or an empty tensor with shape
            (0,) when the cloud has no point with all-finite coordinates.
        """
        if isinstance(axis, str):
            if axis.lower() not in _AXES:
                raise InvalidArgumentError(
                    f"bounds: axis must be 'x', 'y' or 'z', got {axis!r}"
                )
            axis = _AXES[axis.lower()]
        if (
            isinstance(axis, bool)
            or not isinstance(axis, int)
            or axis not in (0, 1, 2)
        ):
            raise InvalidArgumentError(
                f"bounds: axis must be 0, 1 or 2, got {axis!r}"
            )

        points = self._points
        finite = torch.isfinite(points).all(dim=-1)
        values = points[finite, axis]
        if values.numel() == 0:
            return points.new_empty(0)
        return torch.stack([values.min(), values.max()])

    def spatial_index(self) -> KdTree:
        """The k-d tree over this cloud's coordinates, built on first use."""
        return self._index.get(self._points)

    def with_color(self, color) -> "PointCloud":
        """Copy of this cloud with `color` replaced (None removes it)."""
        return self._with_attributes(
            self, _as_color(color, self._location), self._normal
        )

    def with_normal(self, normal) -> "PointCloud":
        """Copy of this cloud with `normal` replaced (None removes it)."""
        return self._with_attributes(
            self, self._color, _as_normal(normal, self._location)
        )

    def select(self, indices) -> "PointCloud":
        """Select points by linear index.

        Parameters
        ----------
        indices : Tensor or sequence of int
            Linear (row-major for organized clouds) indices, in the order
            wanted. Repeats are allowed and produce repeated points. A
            boolean mask of length `count` is also accepted.

        Returns
        -------
        PointCloud
            Unorganized cloud with the selected points and attributes.

        Examples
        --------
        >>> cloud = PointCloud(torch.rand(1000, 3))
        >>> downsampled = cloud.select(torch.arange(0, cloud.count, 10))
        >>> downsampled.count
        100
        """
        return self._subset(
            _as_indices(indices, self.count, "indices", self.device)
        )

    def select_grid(self, rows, columns) -> "PointCloud":
        """Select points of an organized cloud by (row, column) pairs.

        `rows` and `columns` are paired element-wise. The result is an
        unorganized cloud.

        Raises
        ------
        OrganizedOnlyOperationError
            If the cloud is not organized.
        """
        if not self.is_organized:
            raise OrganizedOnlyOperationError(
                "select_grid: row/column selection requires an organized "
                "(rows, cols, 3) point cloud"
            )
        n_rows, n_columns = self.grid_shape
        rows = _as_indices(rows, n_rows, "rows", self.device)
        columns = _as_indices(columns, n_columns, "columns", self.device)
        if rows.shape != columns.shape:
            raise InvalidArgumentError(
                f"select_grid: rows and columns must have the same length, "
                f"got {rows.numel()} and {columns.numel()}"
            )
        return self._subset(rows * n_columns + columns)

    def remove_invalid_points(self) -> "PointCloud":
        """Unorganized copy without the points that have NaN or infinity."""
        finite = torch.isfinite(self._points).all(dim=-1)
        return self._subset(torch.nonzero(finite).squeeze(-1))

    def _subset(self, indices: Tensor) -> "PointCloud":
        color = None
        if self._color is not None:
            color = self._color.reshape(-1, 3)[indices]
        normal = None
        if self._normal is not None:
            normal = self._normal.reshape(-1, 3)[indices]
        return self._from_validated(self._points[indices], color, normal)

    def find_nearest_neighbors(
        self,
        point,
        k: int,
        *,
        sort: bool = False,
        max_leaf_checks: Optional[int] = None,
        options: Optional[SearchOptions] = None,
    ) -> NeighborSearchResult:
        """See :func:`~torchcloud.point_cloud.find_nearest_neighbors`."""
        return find_nearest_neighbors(
            self,
            point,
            k,
            sort=sort,
            max_leaf_checks=max_leaf_checks,
            options=options,
        )

    def find_neighbors_in_radius(
        self,
        point,
        radius: float,
        *,
        sort: bool = False,
        max_leaf_checks: Optional[int] = None,
        options: Optional[SearchOptions] = None,
    ) -> NeighborSearchResult:
        """See :func:`~torchcloud.point_cloud.find_neighbors_in_radius`."""
        return find_neighbors_in_radius(
            self,
            point,
            radius,
            sort=sort,
            max_leaf_checks=max_leaf_checks,
            options=options,
        )

    def find_points_in_roi(self, roi) -> Tensor:
        """See :func:`~torchcloud.point_cloud.find_points_in_roi`."""
        return find_points_in_roi(self, roi)

    def find_nearest_neighbors_batched(
        self,
        points,
        k: int,
        *,
        max_leaf_checks: Optional[int] = None,
    ) -> BatchedNeighborSearchResult:
        """See :func:`~torchcloud.point_cloud.find_nearest_neighbors_batched`."""
        return find_nearest_neighbors_batched(
            self, points, k, max_leaf_checks=max_leaf_checks
        )
