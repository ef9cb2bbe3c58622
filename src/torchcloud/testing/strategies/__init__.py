"""Hypothesis strategies for point cloud testing."""

from ._coordinates import coordinates
from ._point_indices import point_indices
from ._real_numbers import real_numbers
from ._regions_of_interest import regions_of_interest

__all__ = [
    "coordinates",
    "point_indices",
    "real_numbers",
    "regions_of_interest",
]
