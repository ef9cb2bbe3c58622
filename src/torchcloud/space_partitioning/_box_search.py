"""Axis-aligned box query over a k-d tree."""

from __future__ import annotations

from typing import List

import torch
from torch import Tensor

from .._exceptions import InvalidArgumentError, ShapeMismatchError
from ._kd_tree import KdTree, _tree_lists


def box_search(tree: KdTree, roi: Tensor) -> Tensor:
    """Find indexed points inside an axis-aligned box.

    Parameters
    ----------
    tree : KdTree
        Spatial index built by kd_tree().
    roi : Tensor, shape (d, 2)
        Inclusive ``[min, max]`` bounds per dimension. Infinite bounds are
        allowed.

    Returns
    -------
    Tensor, shape (r,)
        Indices of the points inside the box, ascending.

    Notes
    -----
    Only the points the tree indexes are considered. Points listed in
    `tree.excluded` have a non-finite coordinate and must be tested by the
    caller if they matter.

    Examples
    --------
    >>> points = torch.rand(1000, 3)
    >>> tree = kd_tree(points)
    >>> roi = torch.tensor([[0.0, 0.5], [0.0, 0.5], [0.0, 0.5]])
    >>> indices = box_search(tree, roi)
    """
    if not isinstance(tree, KdTree):
        raise InvalidArgumentError(
            f"box_search: unsupported tree type: {type(tree).__name__}"
        )
    d = tree.points.size(1)
    if roi.shape != (d, 2):
        raise ShapeMismatchError(
            f"box_search: roi must have shape ({d}, 2), got {tuple(roi.shape)}"
        )
    if (roi[:, 0] > roi[:, 1]).any():
        raise InvalidArgumentError(
            f"box_search: roi minimum must not exceed maximum, got {roi.tolist()}"
        )

    device = tree.points.device
    bounds = roi.to(dtype=torch.float64).tolist()

    lists = _tree_lists(tree)
    found: List[int] = []
    stack = [0] if lists.node_starts else []

    while stack:
        node = stack.pop()
        lower = lists.lower[node]
        upper = lists.upper[node]

        if any(
            hi < lo_bound or lo > hi_bound
            for lo, hi, (lo_bound, hi_bound) in zip(lower, upper, bounds)
        ):
            continue

        start = lists.node_starts[node]
        segment = lists.indices[start : start + lists.node_counts[node]]

        if all(
            lo >= lo_bound and hi <= hi_bound
            for lo, hi, (lo_bound, hi_bound) in zip(lower, upper, bounds)
        ):
            found.extend(segment)
            continue

        if lists.split_dim[node] >= 0:
            stack.append(lists.right[node])
            stack.append(lists.left[node])
            continue

        for index in segment:
            if all(
                lo_bound <= value <= hi_bound
                for value, (lo_bound, hi_bound) in zip(
                    lists.points[index], bounds
                )
            ):
                found.append(index)

    return torch.tensor(sorted(found), dtype=torch.int64, device=device)
