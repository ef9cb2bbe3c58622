"""Range search query with bounding-box pruning."""

from __future__ import annotations

import heapq
import math
from typing import List

import torch
from torch import Tensor

from .._exceptions import InvalidArgumentError, ShapeMismatchError
from ._k_nearest_neighbors import _validate_max_leaf_checks
from ._kd_tree import (
    KdTree,
    _box_squared_distance,
    _squared_distance,
    _tree_lists,
)


def range_search(
    tree: KdTree,
    query: Tensor,
    radius: float,
    *,
    max_leaf_checks: int = 0,
) -> tuple[Tensor, Tensor]:
    """Find all indexed points within radius of a query point.

    Parameters
    ----------
    tree : KdTree
        Spatial index built by kd_tree().
    query : Tensor, shape (d,)
        Query point.
    radius : float
        Search radius (inclusive).
    max_leaf_checks : int, default=0
        Maximum number of leaves examined. 0 searches every leaf that can
        intersect the ball.

    Returns
    -------
    indices : Tensor, shape (r,)
        Indices of the points within the radius, in leaf visit order.
    squared_distances : Tensor, shape (r,)
        Squared Euclidean distances matching `indices`.

    Notes
    -----
    Leaves are visited nearest box first, so a bounded search collects
    the closest part of the ball before it gives up.

    Examples
    --------
    >>> points = torch.randn(1000, 3)
    >>> tree = kd_tree(points)
    >>> indices, squared_distances = range_search(tree, torch.zeros(3), 0.5)
    >>> bool((squared_distances <= 0.25).all())
    True
    """
    if not isinstance(tree, KdTree):
        raise InvalidArgumentError(
            f"range_search: unsupported tree type: {type(tree).__name__}"
        )
    d = tree.points.size(1)
    if query.dim() != 1 or query.size(0) != d:
        raise ShapeMismatchError(
            f"range_search: query must have shape ({d},), "
            f"got {tuple(query.shape)}"
        )
    radius = float(radius)
    if radius < 0 or not math.isfinite(radius):
        raise InvalidArgumentError(
            f"range_search: radius must be finite and non-negative, "
            f"got {radius}"
        )
    _validate_max_leaf_checks(max_leaf_checks, "range_search")

    device = tree.points.device
    found_indices: List[int] = []
    found_distances: List[float] = []

    lists = _tree_lists(tree)
    if lists.node_starts:
        query_list = query.to(dtype=torch.float64).tolist()
        squared_radius = radius * radius
        frontier = [
            (
                _box_squared_distance(
                    query_list, lists.lower[0], lists.upper[0]
                ),
                0,
            )
        ]
        leaves_checked = 0

        while frontier:
            bound, node = heapq.heappop(frontier)
            if bound > squared_radius:
                break

            if lists.split_dim[node] >= 0:
                for child in (lists.left[node], lists.right[node]):
                    child_bound = _box_squared_distance(
                        query_list, lists.lower[child], lists.upper[child]
                    )
                    if child_bound <= squared_radius:
                        heapq.heappush(frontier, (child_bound, child))
                continue

            start = lists.node_starts[node]
            for index in lists.indices[start : start + lists.node_counts[node]]:
                distance = _squared_distance(query_list, lists.points[index])
                if distance <= squared_radius:
                    found_indices.append(index)
                    found_distances.append(distance)

            leaves_checked += 1
            if max_leaf_checks and leaves_checked >= max_leaf_checks:
                break

    return (
        torch.tensor(found_indices, dtype=torch.int64, device=device),
        torch.tensor(found_distances, dtype=tree.points.dtype, device=device),
    )
