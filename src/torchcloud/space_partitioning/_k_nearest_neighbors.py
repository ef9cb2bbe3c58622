"""k-nearest neighbors query with best-bin-first tree traversal."""

from __future__ import annotations

import heapq
import math
from typing import List, Tuple

import torch
from torch import Tensor

from .._exceptions import InvalidArgumentError, ShapeMismatchError
from ._kd_tree import (
    KdTree,
    _box_squared_distance,
    _squared_distance,
    _tree_lists,
    _TreeLists,
)


def _validate_max_leaf_checks(max_leaf_checks: int, name: str) -> None:
    if isinstance(max_leaf_checks, bool) or not isinstance(
        max_leaf_checks, int
    ):
        raise InvalidArgumentError(
            f"{name}: max_leaf_checks must be an int, "
            f"got {type(max_leaf_checks).__name__}"
        )
    if max_leaf_checks < 0:
        raise InvalidArgumentError(
            f"{name}: max_leaf_checks must be >= 0, got {max_leaf_checks}"
        )


def _search_one(
    lists: _TreeLists,
    query: List[float],
    k: int,
    max_leaf_checks: int,
) -> List[Tuple[float, int]]:
    """Return up to k (squared distance, index) pairs, nearest first."""
    if not lists.node_starts:
        return []

    points = lists.points
    indices = lists.indices

    # Max-heap of the best candidates so far, keyed on (distance, index).
    best: List[Tuple[float, int]] = []
    frontier = [
        (_box_squared_distance(query, lists.lower[0], lists.upper[0]), 0)
    ]
    leaves_checked = 0

    while frontier:
        bound, node = heapq.heappop(frontier)
        if len(best) == k and bound > -best[0][0]:
            break

        if lists.split_dim[node] >= 0:
            for child in (lists.left[node], lists.right[node]):
                child_bound = _box_squared_distance(
                    query, lists.lower[child], lists.upper[child]
                )
                if len(best) < k or child_bound <= -best[0][0]:
                    heapq.heappush(frontier, (child_bound, child))
            continue

        start = lists.node_starts[node]
        for index in indices[start : start + lists.node_counts[node]]:
            distance = _squared_distance(query, points[index])
            if len(best) < k:
                heapq.heappush(best, (-distance, -index))
            elif (distance, index) < (-best[0][0], -best[0][1]):
                heapq.heapreplace(best, (-distance, -index))

        leaves_checked += 1
        if max_leaf_checks and leaves_checked >= max_leaf_checks:
            break

    return sorted((-distance, -index) for distance, index in best)


def k_nearest_neighbors(
    tree: KdTree,
    queries: Tensor,
    k: int,
    *,
    max_leaf_checks: int = 0,
) -> tuple[Tensor, Tensor, Tensor]:
    """Find k nearest neighbors for each query point using tree traversal.

    Parameters
    ----------
    tree : KdTree
        Spatial index built by kd_tree().
    queries : Tensor, shape (m, d)
        Query points.
    k : int
        Number of neighbors to find.
    max_leaf_checks : int, default=0
        Maximum number of leaves examined per query. 0 searches the whole
        tree and returns the exact k nearest neighbors.

    Returns
    -------
    indices : Tensor, shape (m, k)
        Indices of the nearest neighbors per query, nearest first. Ties are
        broken by ascending index. Unfilled slots hold -1.
    squared_distances : Tensor, shape (m, k)
        Squared Euclidean distances matching `indices`. Unfilled slots
        hold inf.
    counts : Tensor, shape (m,)
        Number of valid leading entries in each row.

    Notes
    -----
    Nodes are visited in order of the squared distance from the query to
    their bounding box. With a finite `max_leaf_checks` the search may stop
    before reaching some true neighbors, so a row can come back with fewer
    than k entries or with farther points than the exact answer; entries
    are always ordered nearest first among those found.

    Examples
    --------
    >>> points = torch.randn(1000, 3)
    >>> tree = kd_tree(points)
    >>> queries = torch.randn(10, 3)
    >>> indices, squared_distances, counts = k_nearest_neighbors(tree, queries, k=5)
    >>> indices.shape
    torch.Size([10, 5])
    """
    if not isinstance(tree, KdTree):
        raise InvalidArgumentError(
            f"k_nearest_neighbors: unsupported tree type: {type(tree).__name__}"
        )
    if queries.dim() != 2:
        raise ShapeMismatchError(
            f"k_nearest_neighbors: queries must be 2D (m, d), "
            f"got {queries.dim()}D"
        )

    d = tree.points.size(1)
    if queries.size(1) != d:
        raise ShapeMismatchError(
            f"k_nearest_neighbors: query dimension ({queries.size(1)}) must "
            f"match tree dimension ({d})"
        )
    if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
        raise InvalidArgumentError(
            f"k_nearest_neighbors: k must be a positive int, got {k!r}"
        )
    _validate_max_leaf_checks(max_leaf_checks, "k_nearest_neighbors")

    m = queries.size(0)
    device = tree.points.device
    lists = _tree_lists(tree)

    index_rows: List[List[int]] = []
    distance_rows: List[List[float]] = []
    counts: List[int] = []
    for query in queries.to(dtype=torch.float64).tolist():
        found = _search_one(lists, query, k, max_leaf_checks)
        padding = k - len(found)
        index_rows.append([index for _, index in found] + [-1] * padding)
        distance_rows.append(
            [distance for distance, _ in found] + [math.inf] * padding
        )
        counts.append(len(found))

    return (
        torch.tensor(index_rows, dtype=torch.int64, device=device).reshape(m, k),
        torch.tensor(
            distance_rows, dtype=tree.points.dtype, device=device
        ).reshape(m, k),
        torch.tensor(counts, dtype=torch.int64, device=device),
    )
