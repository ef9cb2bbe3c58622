"""Linear-scan neighbor queries for small point sets."""

from __future__ import annotations

import torch
from torch import Tensor


def _squared_distances(points: Tensor, query: Tensor) -> Tensor:
    """Squared distance to every point, inf for rows with non-finite values."""
    query = query.to(device=points.device, dtype=points.dtype)
    distances = (points - query).pow(2).sum(dim=-1)
    finite = torch.isfinite(points).all(dim=-1)
    return torch.where(finite, distances, distances.new_tensor(float("inf")))


def brute_force_k_nearest_neighbors(
    points: Tensor,
    query: Tensor,
    k: int,
) -> tuple[Tensor, Tensor]:
    """Find the k nearest points to a query by scanning every point.

    Parameters
    ----------
    points : Tensor, shape (n, d)
        Candidate points. Rows with a non-finite coordinate never match.
    query : Tensor, shape (d,)
        Query point.
    k : int
        Maximum number of neighbors.

    Returns
    -------
    indices : Tensor, shape (r,)
        Indices of the nearest points, nearest first, ties broken by
        ascending index. ``r <= k``; fewer are returned when fewer than k
        points are finite.
    squared_distances : Tensor, shape (r,)
        Squared Euclidean distances matching `indices`.
    """
    distances = _squared_distances(points, query)
    distances, order = torch.sort(distances, stable=True)
    distances = distances[:k]
    order = order[:k]
    keep = torch.isfinite(distances)
    return order[keep], distances[keep]


def brute_force_range_search(
    points: Tensor,
    query: Tensor,
    radius: float,
) -> tuple[Tensor, Tensor]:
    """Find every point within radius of a query by scanning every point.

    Returns indices in ascending order and their squared distances.
    """
    distances = _squared_distances(points, query)
    indices = torch.nonzero(distances <= radius * radius).squeeze(-1)
    return indices, distances[indices]


def brute_force_box_search(points: Tensor, roi: Tensor) -> Tensor:
    """Indices of points inside the inclusive box ``roi`` of shape (d, 2).

    No finiteness filter is applied: a point with an infinite coordinate
    is inside a box whose bound on that axis is the same infinity.
    """
    roi = roi.to(points.device)
    inside = ((points >= roi[:, 0]) & (points <= roi[:, 1])).all(dim=-1)
    return torch.nonzero(inside).squeeze(-1)
