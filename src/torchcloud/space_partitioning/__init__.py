"""Spatial data structures for neighbor search and range queries.

This module provides a k-d tree and linear-scan fallbacks with:
- Exact and bounded (approximate) k-nearest-neighbor search
- Radius search and axis-aligned box search with subtree pruning
- Batched k-nearest-neighbor queries for (m, d) query sets

Note: Tree construction produces a discrete data structure and is NOT
differentiable. A built tree is read-only, so concurrent queries against
the same tree are safe.
"""

from ._box_search import box_search
from ._brute_force import (
    brute_force_box_search,
    brute_force_k_nearest_neighbors,
    brute_force_range_search,
)
from ._k_nearest_neighbors import k_nearest_neighbors
from ._kd_tree import DEFAULT_LEAF_SIZE, KdTree, kd_tree
from ._range_search import range_search

__all__ = [
    "DEFAULT_LEAF_SIZE",
    "KdTree",
    "box_search",
    "brute_force_box_search",
    "brute_force_k_nearest_neighbors",
    "brute_force_range_search",
    "k_nearest_neighbors",
    "kd_tree",
    "range_search",
]
