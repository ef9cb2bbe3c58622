"""Typed options for neighbor queries."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

from .._exceptions import InvalidArgumentError


@dataclass(frozen=True)
class SearchOptions:
    """Options shared by the nearest-neighbor and radius queries.

    Parameters
    ----------
    sort : bool
        Return results ordered by ascending distance.
    max_leaf_checks : int, optional
        Number of k-d tree leaves examined per query. ``None``, ``0`` or
        ``math.inf`` search the whole tree and give exact results. A
        positive integer bounds the work; larger values find more of the
        true neighbors at the cost of speed.

    Examples
    --------
    >>> SearchOptions(sort=True, max_leaf_checks=64).leaf_checks
    64
    >>> SearchOptions().leaf_checks
    0
    """

    sort: bool = False
    max_leaf_checks: Optional[Union[int, float]] = None

    def __post_init__(self):
        if not isinstance(self.sort, bool):
            raise InvalidArgumentError(
                f"SearchOptions: sort must be a bool, "
                f"got {type(self.sort).__name__}"
            )

        value = self.max_leaf_checks
        if value is None or (isinstance(value, float) and value == math.inf):
            return
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgumentError(
                f"SearchOptions: max_leaf_checks must be a non-negative int "
                f"or inf, got {value!r}"
            )
        if value < 0:
            raise InvalidArgumentError(
                f"SearchOptions: max_leaf_checks must be a non-negative int "
                f"or inf, got {value}"
            )

    @property
    def exhaustive(self) -> bool:
        """Whether the whole index is searched."""
        return self.leaf_checks == 0

    @property
    def leaf_checks(self) -> int:
        """Leaf budget in the form the tree queries take (0 is unbounded)."""
        if self.max_leaf_checks is None or self.max_leaf_checks == math.inf:
            return 0
        return int(self.max_leaf_checks)
