"""Shared fixtures for torchcloud tests."""

import pytest
import torch

from torchcloud import PointCloud


@pytest.fixture
def four_points():
    """Three points around the origin and one far away."""
    return torch.tensor(
        [
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
            [5.0, 5.0, 5.0],
        ]
    )


@pytest.fixture
def four_point_cloud(four_points):
    return PointCloud(four_points)


@pytest.fixture
def large_points():
    """2000 uniform float64 points, enough to take the k-d tree path."""
    generator = torch.Generator().manual_seed(0)
    return torch.rand(2000, 3, dtype=torch.float64, generator=generator)


@pytest.fixture
def large_cloud(large_points):
    return PointCloud(large_points)


@pytest.fixture
def cube_corners():
    """The 8 corners of the unit cube, each repeated 5 times (40 points).

    Every point is the same distance from the cube center, so neighbor
    order from the center is decided by index alone.
    """
    corners = torch.tensor(
        [[x, y, z] for x in (0.0, 1.0) for y in (0.0, 1.0) for z in (0.0, 1.0)],
        dtype=torch.float64,
    )
    return corners.repeat(5, 1)
