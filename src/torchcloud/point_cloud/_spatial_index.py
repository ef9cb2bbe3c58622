"""Lazily built k-d tree cache bound to one coordinate buffer."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from torch import Tensor

from ..space_partitioning import DEFAULT_LEAF_SIZE, KdTree, kd_tree

logger = logging.getLogger(__name__)


def _buffer_key(points: Tensor) -> Tuple[int, int, Tuple[int, ...]]:
    # _version is bumped by every in-place write to the storage, views
    # included.
    return points.data_ptr(), points._version, tuple(points.shape)


class SpatialIndexCache:
    """Holds the k-d tree for a coordinate buffer and rebuilds it on change.

    The tree is built on the first call to :meth:`get` and reused while
    the buffer keeps the same storage pointer, version counter and shape.
    Any other buffer, or an in-place write to this one, discards the tree
    and builds a fresh one, so a query never runs against stale
    coordinates.

    Builds happen under a lock with a second check inside it, so threads
    racing on first use build the tree once. Reading a built tree takes no
    lock; queries on a built tree are read-only and may run concurrently.

    Parameters
    ----------
    leaf_size : int
        Leaf size passed to :func:`~torchcloud.space_partitioning.kd_tree`.
    """

    def __init__(self, leaf_size: int = DEFAULT_LEAF_SIZE):
        self.leaf_size = leaf_size
        self.build_count = 0
        self._lock = threading.Lock()
        self._entry: Optional[Tuple[tuple, KdTree]] = None

    @property
    def is_built(self) -> bool:
        return self._entry is not None

    def get(self, points: Tensor) -> KdTree:
        """Return the tree for ``points``, building it if needed."""
        key = _buffer_key(points)

        entry = self._entry
        if entry is not None and entry[0] == key:
            return entry[1]

        with self._lock:
            entry = self._entry
            if entry is not None and entry[0] == key:
                return entry[1]

            if entry is not None:
                logger.debug(
                    "Coordinate buffer changed, discarding k-d tree "
                    "(build %d)",
                    self.build_count,
                )

            tree = kd_tree(points, leaf_size=self.leaf_size)
            self._entry = (key, tree)
            self.build_count += 1
            return tree

    def clear(self) -> None:
        """Drop the cached tree."""
        with self._lock:
            self._entry = None
