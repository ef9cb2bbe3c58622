"""Point cloud container and neighbor queries.

A :class:`PointCloud` holds coordinates with optional color and normal
attributes. Queries on clouds of fewer than ``BRUTE_FORCE_THRESHOLD``
points scan every point; larger clouds build a k-d tree on first use and
keep it for as long as the coordinate buffer is unchanged.
"""

from ._point_cloud import PointCloud
from ._search import (
    BRUTE_FORCE_THRESHOLD,
    BatchedNeighborSearchResult,
    NeighborSearchResult,
    find_nearest_neighbors,
    find_nearest_neighbors_batched,
    find_neighbors_in_radius,
    find_points_in_roi,
)
from ._search_options import SearchOptions
from ._spatial_index import SpatialIndexCache

__all__ = [
    "BRUTE_FORCE_THRESHOLD",
    "BatchedNeighborSearchResult",
    "NeighborSearchResult",
    "PointCloud",
    "SearchOptions",
    "SpatialIndexCache",
    "find_nearest_neighbors",
    "find_nearest_neighbors_batched",
    "find_neighbors_in_radius",
    "find_points_in_roi",
]
