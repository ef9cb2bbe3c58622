"""Neighbor queries that choose between linear scan and k-d tree."""

from __future__ import annotations

import logging
import math
import numbers
from typing import TYPE_CHECKING, NamedTuple, Optional

import torch
from torch import Tensor

from .._exceptions import InvalidArgumentError
from ..space_partitioning import (
    box_search,
    brute_force_box_search,
    brute_force_k_nearest_neighbors,
    brute_force_range_search,
    k_nearest_neighbors,
    range_search,
)
from ._search_options import SearchOptions

if TYPE_CHECKING:
    from ._point_cloud import PointCloud

logger = logging.getLogger(__name__)

# Below this many points a linear scan beats building the tree.
BRUTE_FORCE_THRESHOLD = 500


class NeighborSearchResult(NamedTuple):
    """Result of a single-point neighbor query.

    Parameters
    ----------
    indices : Tensor
        Linear indices into the point cloud, ``int64``, shape (r,).
    distances : Tensor
        Euclidean distances to the query point, shape (r,).
    """

    indices: Tensor
    distances: Tensor


class BatchedNeighborSearchResult(NamedTuple):
    """Result of a multi-point nearest-neighbor query.

    Parameters
    ----------
    indices : Tensor
        Shape (m, k). Row i holds the neighbors of query i, nearest first;
        unfilled slots are -1.
    distances : Tensor
        Shape (m, k). Euclidean distances; unfilled slots are inf.
    counts : Tensor
        Shape (m,). Number of valid leading entries per row.
    """

    indices: Tensor
    distances: Tensor
    counts: Tensor


def _resolve_options(
    options: Optional[SearchOptions],
    sort: bool,
    max_leaf_checks,
) -> SearchOptions:
    if options is not None:
        if not isinstance(options, SearchOptions):
            raise InvalidArgumentError(
                f"options must be SearchOptions, got {type(options).__name__}"
            )
        return options
    return SearchOptions(sort=sort, max_leaf_checks=max_leaf_checks)


def _as_query_point(point, point_cloud: "PointCloud", name: str) -> Tensor:
    try:
        point = torch.as_tensor(
            point, dtype=point_cloud.dtype, device=point_cloud.device
        )
    except (TypeError, ValueError, RuntimeError) as error:
        raise InvalidArgumentError(
            f"{name}: point must be a 3-vector, got {point!r}"
        ) from error
    if point.numel() != 3 or point.dim() > 2:
        raise InvalidArgumentError(
            f"{name}: point must be a 3-vector, got shape {tuple(point.shape)}"
        )
    point = point.reshape(3)
    if not torch.isfinite(point).all():
        raise InvalidArgumentError(
            f"{name}: point must be finite, got {point.tolist()}"
        )
    return point


def _as_k(k, name: str) -> int:
    if isinstance(k, Tensor) and k.numel() == 1:
        k = k.item()
    if isinstance(k, float) and k.is_integer():
        k = int(k)
    if isinstance(k, bool) or not isinstance(k, numbers.Integral) or k <= 0:
        raise InvalidArgumentError(f"{name}: k must be a positive integer, got {k!r}")
    return int(k)


def _sort_by_distance(indices: Tensor, distances: Tensor):
    distances, order = torch.sort(distances, stable=True)
    return indices[order], distances


def _empty_result(point_cloud: "PointCloud") -> NeighborSearchResult:
    return NeighborSearchResult(
        indices=torch.empty(0, dtype=torch.int64, device=point_cloud.device),
        distances=torch.empty(
            0, dtype=point_cloud.dtype, device=point_cloud.device
        ),
    )


def find_nearest_neighbors(
    point_cloud: "PointCloud",
    point,
    k: int,
    *,
    sort: bool = False,
    max_leaf_checks: Optional[int] = None,
    options: Optional[SearchOptions] = None,
) -> NeighborSearchResult:
    """Find the k nearest neighbors of a point.

    Parameters
    ----------
    point_cloud : PointCloud
        Points to search.
    point : Tensor or sequence of float
        Finite query point [x, y, z].
    k : int
        Number of neighbors. Values above ``point_cloud.count`` are clamped.
    sort : bool, default=False
        Order the result by ascending distance. Linear-scan results (clouds
        below ``BRUTE_FORCE_THRESHOLD`` points) are always sorted.
    max_leaf_checks : int, optional
        Leaves of the k-d tree examined. None searches the whole tree and
        returns the exact neighbors; a bound trades accuracy for speed.
    options : SearchOptions, optional
        Overrides `sort` and `max_leaf_checks` when given.

    Returns
    -------
    NeighborSearchResult
        ``(indices, distances)``. At most k entries; fewer when the cloud
        has fewer finite points or a bounded search comes up short. Points
        with NaN or infinite coordinates are never returned.

    Raises
    ------
    InvalidArgumentError
        If `point` is not a finite 3-vector or `k` is not a positive
        integer.

    Examples
    --------
    >>> cloud = PointCloud(torch.rand(1000, 3))
    >>> indices, distances = find_nearest_neighbors(cloud, [0.5, 0.5, 0.5], 10)
    """
    options = _resolve_options(options, sort, max_leaf_checks)
    query = _as_query_point(point, point_cloud, "find_nearest_neighbors")
    k = min(_as_k(k, "find_nearest_neighbors"), point_cloud.count)
    if k == 0:
        return _empty_result(point_cloud)

    points = point_cloud._points

    if point_cloud.count < BRUTE_FORCE_THRESHOLD:
        logger.debug(
            "find_nearest_neighbors: linear scan over %d points, k=%d",
            point_cloud.count,
            k,
        )
        indices, squared_distances = brute_force_k_nearest_neighbors(
            points, query, k
        )
    else:
        logger.debug(
            "find_nearest_neighbors: k-d tree over %d points, k=%d, "
            "max_leaf_checks=%d",
            point_cloud.count,
            k,
            options.leaf_checks,
        )
        tree = point_cloud.spatial_index()
        indices, squared_distances, counts = k_nearest_neighbors(
            tree,
            query.unsqueeze(0),
            k,
            max_leaf_checks=options.leaf_checks,
        )
        valid = int(counts[0])
        indices = indices[0, :valid]
        squared_distances = squared_distances[0, :valid]
        if options.sort:
            indices, squared_distances = _sort_by_distance(
                indices, squared_distances
            )

    return NeighborSearchResult(indices, torch.sqrt(squared_distances))


def find_neighbors_in_radius(
    point_cloud: "PointCloud",
    point,
    radius: float,
    *,
    sort: bool = False,
    max_leaf_checks: Optional[int] = None,
    options: Optional[SearchOptions] = None,
) -> NeighborSearchResult:
    """Find every point within a radius of a point.

    Parameters
    ----------
    point_cloud : PointCloud
        Points to search.
    point : Tensor or sequence of float
        Finite query point [x, y, z].
    radius : float
        Finite, non-negative search radius. The boundary is included.
    sort : bool, default=False
        Order the result by ascending distance. Otherwise linear-scan
        results come in index order and tree results in leaf visit order.
    max_leaf_checks : int, optional
        Leaves of the k-d tree examined. None finds every point in the ball.
    options : SearchOptions, optional
        Overrides `sort` and `max_leaf_checks` when given.

    Returns
    -------
    NeighborSearchResult
        ``(indices, distances)`` of every finite point with
        ``distance <= radius``.

    Raises
    ------
    InvalidArgumentError
        If `point` is not a finite 3-vector, or `radius` is negative or
        not finite.

    Examples
    --------
    >>> cloud = PointCloud(100 * torch.rand(1000, 3))
    >>> indices, distances = find_neighbors_in_radius(cloud, [50, 50, 50], 5.0)
    """
    options = _resolve_options(options, sort, max_leaf_checks)
    query = _as_query_point(point, point_cloud, "find_neighbors_in_radius")
    try:
        radius = float(radius)
    except (TypeError, ValueError) as error:
        raise InvalidArgumentError(
            f"find_neighbors_in_radius: radius must be a number, got {radius!r}"
        ) from error
    if radius < 0 or not math.isfinite(radius):
        raise InvalidArgumentError(
            f"find_neighbors_in_radius: radius must be finite and "
            f"non-negative, got {radius}"
        )
    if point_cloud.count == 0:
        return _empty_result(point_cloud)

    if point_cloud.count < BRUTE_FORCE_THRESHOLD:
        logger.debug(
            "find_neighbors_in_radius: linear scan over %d points, radius=%g",
            point_cloud.count,
            radius,
        )
        indices, squared_distances = brute_force_range_search(
            point_cloud._points, query, radius
        )
    else:
        logger.debug(
            "find_neighbors_in_radius: k-d tree over %d points, radius=%g, "
            "max_leaf_checks=%d",
            point_cloud.count,
            radius,
            options.leaf_checks,
        )
        indices, squared_distances = range_search(
            point_cloud.spatial_index(),
            query,
            radius,
            max_leaf_checks=options.leaf_checks,
        )

    if options.sort:
        indices, squared_distances = _sort_by_distance(
            indices, squared_distances
        )

    return NeighborSearchResult(indices, torch.sqrt(squared_distances))


def find_points_in_roi(point_cloud: "PointCloud", roi) -> Tensor:
    """Find the points inside an axis-aligned box.

    Parameters
    ----------
    point_cloud : PointCloud
        Points to search.
    roi : Tensor or nested sequence, shape (3, 2)
        ``[[xmin, xmax], [ymin, ymax], [zmin, zmax]]``, inclusive. Bounds
        may be infinite.

    Returns
    -------
    Tensor
        ``int64`` linear indices of the points inside the box, ascending
        (row-major for organized clouds). Points are not filtered for
        finiteness: a point at ``+inf`` lies in a box whose maximum is
        ``+inf``.

    Raises
    ------
    InvalidArgumentError
        If `roi` is not (3, 2), contains NaN, or has min > max on an axis.

    Examples
    --------
    >>> cloud = PointCloud(100 * torch.rand(1000, 3))
    >>> indices = find_points_in_roi(cloud, [[0, 50], [0, math.inf], [0, math.inf]])
    >>> inside = cloud.select(indices)
    """
    try:
        roi = torch.as_tensor(
            roi, dtype=torch.float64, device=point_cloud.device
        )
    except (TypeError, ValueError, RuntimeError) as error:
        raise InvalidArgumentError(
            f"find_points_in_roi: roi must be a (3, 2) array, got {roi!r}"
        ) from error
    if roi.shape != (3, 2):
        raise InvalidArgumentError(
            f"find_points_in_roi: roi must have shape (3, 2), "
            f"got {tuple(roi.shape)}"
        )
    if torch.isnan(roi).any():
        raise InvalidArgumentError(
            f"find_points_in_roi: roi must not contain NaN, got {roi.tolist()}"
        )
    if (roi[:, 0] > roi[:, 1]).any():
        raise InvalidArgumentError(
            f"find_points_in_roi: roi minimum must not exceed maximum, "
            f"got {roi.tolist()}"
        )

    points = point_cloud._points

    if point_cloud.count < BRUTE_FORCE_THRESHOLD:
        logger.debug(
            "find_points_in_roi: linear scan over %d points",
            point_cloud.count,
        )
        return brute_force_box_search(points, roi)

    logger.debug(
        "find_points_in_roi: k-d tree over %d points", point_cloud.count
    )
    tree = point_cloud.spatial_index()
    indices = box_search(tree, roi)
    if tree.excluded.numel() == 0:
        return indices

    # The tree skips points with a non-finite coordinate; test those here.
    hits = tree.excluded[brute_force_box_search(points[tree.excluded], roi)]
    return torch.sort(torch.cat([indices, hits]))[0]


def find_nearest_neighbors_batched(
    point_cloud: "PointCloud",
    points,
    k: int,
    *,
    max_leaf_checks: Optional[int] = None,
) -> BatchedNeighborSearchResult:
    """Find the k nearest neighbors of many points at once.

    Always uses the k-d tree, whatever the size of the cloud.

    Parameters
    ----------
    point_cloud : PointCloud
        Points to search.
    points : Tensor, shape (m, 3)
        Finite query points.
    k : int
        Number of neighbors per query, clamped to ``point_cloud.count``.
    max_leaf_checks : int, optional
        Leaves of the k-d tree examined per query. None is exact.

    Returns
    -------
    BatchedNeighborSearchResult
        ``(indices, distances, counts)`` with (m, k) padded rows, nearest
        first, and the number of valid entries per row.

    Examples
    --------
    >>> cloud = PointCloud(torch.rand(1000, 3))
    >>> result = find_nearest_neighbors_batched(cloud, torch.rand(5, 3), 4)
    >>> result.indices.shape
    torch.Size([5, 4])
    """
    options = SearchOptions(max_leaf_checks=max_leaf_checks)
    name = "find_nearest_neighbors_batched"
    try:
        queries = torch.as_tensor(
            points, dtype=point_cloud.dtype, device=point_cloud.device
        )
    except (TypeError, ValueError, RuntimeError) as error:
        raise InvalidArgumentError(
            f"{name}: points must be an (m, 3) array, got {points!r}"
        ) from error
    if queries.dim() != 2 or queries.size(1) != 3:
        raise InvalidArgumentError(
            f"{name}: points must have shape (m, 3), got {tuple(queries.shape)}"
        )
    if not torch.isfinite(queries).all():
        raise InvalidArgumentError(f"{name}: points must be finite")
    k = min(_as_k(k, name), point_cloud.count)

    m = queries.size(0)
    if k == 0:
        return BatchedNeighborSearchResult(
            indices=torch.empty((m, 0), dtype=torch.int64, device=queries.device),
            distances=queries.new_empty((m, 0)),
            counts=torch.zeros(m, dtype=torch.int64, device=queries.device),
        )

    logger.debug(
        "%s: k-d tree over %d points, %d queries, k=%d",
        name,
        point_cloud.count,
        m,
        k,
    )
    indices, squared_distances, counts = k_nearest_neighbors(
        point_cloud.spatial_index(),
        queries,
        k,
        max_leaf_checks=options.leaf_checks,
    )
    return BatchedNeighborSearchResult(
        indices, torch.sqrt(squared_distances), counts
    )
