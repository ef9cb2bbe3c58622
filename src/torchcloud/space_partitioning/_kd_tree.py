"""k-d tree built by median splits along the widest dimension."""

from __future__ import annotations

import logging
import weakref
from typing import Dict, List, NamedTuple, Tuple

import torch
from tensordict import tensorclass
from torch import Tensor

from .._exceptions import InvalidArgumentError, ShapeMismatchError

logger = logging.getLogger(__name__)

DEFAULT_LEAF_SIZE = 10


@tensorclass
class KdTree:
    """k-d tree spatial data structure.

    Use `kd_tree()` to construct instances. Every node covers a contiguous
    run of `indices`, so internal nodes can be accepted wholesale by box
    queries without descending to their leaves.

    As a tensorclass, KdTree supports:
    - Device movement: `tree.to("cuda")` or `tree.cuda()`
    - Serialization: `torch.save(tree, path)` / `torch.load(path)`

    Attributes
    ----------
    points : Tensor
        Original points, shape [n, d]. Non-finite rows are kept here but
        are not reachable from any node.
    split_dim : Tensor
        Split dimension per node (-1 for leaf), shape [n_nodes].
    split_val : Tensor
        Split value per node (matches input dtype), shape [n_nodes].
    left : Tensor
        Left child index (-1 for leaf), shape [n_nodes].
    right : Tensor
        Right child index (-1 for leaf), shape [n_nodes].
    lower : Tensor
        Tight lower corner of each node's points, shape [n_nodes, d].
    upper : Tensor
        Tight upper corner of each node's points, shape [n_nodes, d].
    node_starts : Tensor
        Start offset in `indices` per node, shape [n_nodes].
    node_counts : Tensor
        Number of points under each node, shape [n_nodes].
    indices : Tensor
        Indexed point indices in leaf order, shape [n_finite].
    excluded : Tensor
        Indices of points with a non-finite coordinate, shape [n - n_finite].

    Notes
    -----
    Node 0 is the root. A tree over a point set without finite points has
    no nodes at all.

    Examples
    --------
    >>> points = torch.randn(100, 3)
    >>> tree = kd_tree(points)
    >>> tree.indices.shape
    torch.Size([100])
    """

    points: Tensor
    split_dim: Tensor
    split_val: Tensor
    left: Tensor
    right: Tensor
    lower: Tensor
    upper: Tensor
    node_starts: Tensor
    node_counts: Tensor
    indices: Tensor
    excluded: Tensor


class _TreeLists(NamedTuple):
    """Python-list view of a KdTree used by the traversal loops."""

    key: Tuple[int, int, int]
    split_dim: List[int]
    split_val: List[float]
    left: List[int]
    right: List[int]
    lower: List[List[float]]
    upper: List[List[float]]
    node_starts: List[int]
    node_counts: List[int]
    indices: List[int]
    points: List[List[float]]


# Registry mapping KdTree object id -> (weak reference, list view)
_TREE_LISTS_REGISTRY: Dict[int, Tuple[weakref.ref, _TreeLists]] = {}


def _make_ref_callback(tree_id: int):
    """Create a weak reference callback that drops the tree's list view."""

    def _callback(ref: weakref.ref) -> None:
        entry = _TREE_LISTS_REGISTRY.get(tree_id)
        if entry is not None and entry[0] is ref:
            _TREE_LISTS_REGISTRY.pop(tree_id, None)

    return _callback


def _tree_key(tree: KdTree) -> Tuple[int, int, int]:
    return tree.points.data_ptr(), tree.points._version, tree.indices._version


def _build_tree_lists(tree: KdTree, key: Tuple[int, int, int]) -> _TreeLists:
    return _TreeLists(
        key=key,
        split_dim=tree.split_dim.tolist(),
        split_val=tree.split_val.tolist(),
        left=tree.left.tolist(),
        right=tree.right.tolist(),
        lower=tree.lower.double().tolist(),
        upper=tree.upper.double().tolist(),
        node_starts=tree.node_starts.tolist(),
        node_counts=tree.node_counts.tolist(),
        indices=tree.indices.tolist(),
        points=tree.points.double().tolist(),
    )


def _tree_lists(tree: KdTree) -> _TreeLists:
    """Return the list view of `tree`, converting it on first use.

    The view lives as long as the tree and is converted again only after an
    in-place write to `tree.points` or `tree.indices`.
    """
    tree_id = id(tree)
    key = _tree_key(tree)

    entry = _TREE_LISTS_REGISTRY.get(tree_id)
    if entry is not None and entry[0]() is tree and entry[1].key == key:
        return entry[1]

    lists = _build_tree_lists(tree, key)
    _TREE_LISTS_REGISTRY[tree_id] = (
        weakref.ref(tree, _make_ref_callback(tree_id)),
        lists,
    )
    return lists


def _squared_distance(query: List[float], point: List[float]) -> float:
    total = 0.0
    for q, p in zip(query, point):
        total += (p - q) * (p - q)
    return total


def _box_squared_distance(
    query: List[float], lower: List[float], upper: List[float]
) -> float:
    """Squared distance from a point to an axis-aligned box (0 inside)."""
    total = 0.0
    for q, lo, hi in zip(query, lower, upper):
        if q < lo:
            total += (lo - q) * (lo - q)
        elif q > hi:
            total += (q - hi) * (q - hi)
    return total


def kd_tree(
    points: Tensor,
    *,
    leaf_size: int = DEFAULT_LEAF_SIZE,
) -> KdTree:
    """Build a k-d tree with median splits along the widest dimension.

    Parameters
    ----------
    points : Tensor, shape [n, d]
        Points to index. Rows containing NaN or infinity are skipped and
        recorded in `KdTree.excluded`.
    leaf_size : int, default=10
        Maximum points per leaf node.

    Returns
    -------
    KdTree
        Tree structure.

    Notes
    -----
    Each node splits along the dimension of largest extent of its own
    points, at the median. Nodes whose points coincide become leaves
    regardless of `leaf_size`. The Python-list view the queries traverse
    is converted here and kept for the lifetime of the tree.

    Tree construction is a discrete operation and is NOT differentiable.

    Examples
    --------
    >>> points = torch.randn(1000, 3)
    >>> tree = kd_tree(points, leaf_size=10)
    >>> tree.points.shape
    torch.Size([1000, 3])
    """
    if points.dim() != 2:
        raise ShapeMismatchError(
            f"kd_tree: points must be 2D (n, d), got {points.dim()}D"
        )
    if isinstance(leaf_size, bool) or not isinstance(leaf_size, int):
        raise InvalidArgumentError(
            f"kd_tree: leaf_size must be an int, got {type(leaf_size).__name__}"
        )
    if leaf_size <= 0:
        raise InvalidArgumentError(
            f"kd_tree: leaf_size must be > 0, got {leaf_size}"
        )
    if not points.is_floating_point():
        points = points.to(torch.get_default_dtype())

    n, d = points.shape
    finite = torch.isfinite(points).all(dim=-1)
    indices = torch.nonzero(finite).squeeze(-1)
    excluded = torch.nonzero(~finite).squeeze(-1)

    split_dim: List[int] = []
    split_val: List[float] = []
    left: List[int] = []
    right: List[int] = []
    lower: List[Tensor] = []
    upper: List[Tensor] = []
    node_starts: List[int] = []
    node_counts: List[int] = []

    def new_node(start: int, count: int) -> int:
        split_dim.append(-1)
        split_val.append(0.0)
        left.append(-1)
        right.append(-1)
        lower.append(None)
        upper.append(None)
        node_starts.append(start)
        node_counts.append(count)
        return len(node_starts) - 1

    stack = [new_node(0, indices.numel())] if indices.numel() > 0 else []

    while stack:
        node = stack.pop()
        start = node_starts[node]
        count = node_counts[node]

        segment = indices[start : start + count]
        coordinates = points[segment]
        lo = coordinates.amin(dim=0)
        hi = coordinates.amax(dim=0)
        lower[node] = lo
        upper[node] = hi

        if count <= leaf_size:
            continue

        extent = hi - lo
        dim = int(torch.argmax(extent))
        if extent[dim] <= 0:
            continue

        values = coordinates[:, dim]
        order = torch.argsort(values, stable=True)
        indices[start : start + count] = segment[order]

        middle = count // 2
        split_dim[node] = dim
        split_val[node] = float(values[order[middle]])
        left[node] = new_node(start, middle)
        right[node] = new_node(start + middle, count - middle)

        stack.append(right[node])
        stack.append(left[node])

    n_nodes = len(node_starts)
    device = points.device

    if n_nodes > 0:
        lower_tensor = torch.stack(lower)
        upper_tensor = torch.stack(upper)
    else:
        lower_tensor = points.new_empty((0, d))
        upper_tensor = points.new_empty((0, d))

    logger.debug(
        "Built k-d tree over %d of %d points: %d nodes, leaf_size=%d",
        indices.numel(),
        n,
        n_nodes,
        leaf_size,
    )

    tree = KdTree(
        points=points,
        split_dim=torch.tensor(split_dim, dtype=torch.int64, device=device),
        split_val=torch.tensor(split_val, dtype=points.dtype, device=device),
        left=torch.tensor(left, dtype=torch.int64, device=device),
        right=torch.tensor(right, dtype=torch.int64, device=device),
        lower=lower_tensor,
        upper=upper_tensor,
        node_starts=torch.tensor(node_starts, dtype=torch.int64, device=device),
        node_counts=torch.tensor(node_counts, dtype=torch.int64, device=device),
        indices=indices,
        excluded=excluded,
        batch_size=[],
    )
    _tree_lists(tree)

    return tree
