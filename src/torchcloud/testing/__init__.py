"""Testing utilities for torchcloud."""

from .strategies import (
    coordinates,
    point_indices,
    real_numbers,
    regions_of_interest,
)

__all__ = [
    "coordinates",
    "point_indices",
    "real_numbers",
    "regions_of_interest",
]
