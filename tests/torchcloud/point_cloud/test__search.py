# tests/torchcloud/point_cloud/test__search.py
import math

import hypothesis
import hypothesis.strategies
import pytest
import scipy.spatial
import torch

from torchcloud import InvalidArgumentError, PointCloud
from torchcloud.point_cloud import (
    BRUTE_FORCE_THRESHOLD,
    BatchedNeighborSearchResult,
    NeighborSearchResult,
    SearchOptions,
    find_nearest_neighbors,
    find_nearest_neighbors_batched,
    find_neighbors_in_radius,
    find_points_in_roi,
)
from torchcloud.space_partitioning import (
    brute_force_k_nearest_neighbors,
    brute_force_range_search,
)
from torchcloud.testing import coordinates, real_numbers

_UNBOUNDED = [[-math.inf, math.inf]] * 3


def _query_points():
    return hypothesis.strategies.lists(
        real_numbers(), min_size=3, max_size=3
    ).map(lambda values: torch.tensor(values, dtype=torch.float64))


class TestFourPointScenario:
    """Small cloud with known answers."""

    def test_two_nearest(self, four_point_cloud):
        """The two nearest points to the origin."""
        indices, distances = find_nearest_neighbors(
            four_point_cloud, [0.0, 0.0, 0.0], 2
        )
        assert indices[0] == 0
        assert set(indices.tolist()) in ({0, 1}, {0, 2})
        torch.testing.assert_close(distances, torch.tensor([0.0, 1.0]))

    def test_radius(self, four_point_cloud):
        """Points within distance 1 of the origin."""
        indices, distances = find_neighbors_in_radius(
            four_point_cloud, [0.0, 0.0, 0.0], 1.0
        )
        assert sorted(indices.tolist()) == [0, 1, 2]
        assert sorted(distances.tolist()) == [0.0, 1.0, 1.0]

    def test_roi(self, four_point_cloud):
        """Points inside the unit box."""
        indices = find_points_in_roi(
            four_point_cloud, [[0, 1], [0, 1], [0, 1]]
        )
        assert indices.tolist() == [0, 1, 2]

    def test_methods_delegate(self, four_point_cloud):
        """PointCloud methods return what the functions return."""
        assert four_point_cloud.find_nearest_neighbors(
            [5.0, 5.0, 5.0], 1
        ).indices.tolist() == [3]
        assert four_point_cloud.find_neighbors_in_radius(
            [5.0, 5.0, 5.0], 0.5
        ).indices.tolist() == [3]
        assert four_point_cloud.find_points_in_roi(
            [[4, 6], [4, 6], [4, 6]]
        ).tolist() == [3]

    def test_returns_named_result(self, four_point_cloud):
        """Single queries return a NeighborSearchResult."""
        result = find_nearest_neighbors(four_point_cloud, [0, 0, 0], 1)
        assert isinstance(result, NeighborSearchResult)
        assert result.indices.dtype == torch.int64
        assert result.distances.dtype == torch.float32

    def test_k_is_clamped(self, four_point_cloud):
        """k above the count returns every point."""
        indices, distances = find_nearest_neighbors(
            four_point_cloud, [0, 0, 0], 100
        )
        assert indices.tolist() == [0, 1, 2, 3]
        assert float(distances[-1]) == pytest.approx(math.sqrt(75.0))

    def test_distances_are_euclidean(self, four_point_cloud):
        """Distances are Euclidean, not squared."""
        _, distances = find_nearest_neighbors(four_point_cloud, [5, 5, 5], 4)
        assert float(distances[-1]) == pytest.approx(math.sqrt(75.0))


class TestQueryValidation:
    """Argument errors are raised before any search."""

    @pytest.mark.parametrize("k", [0, -2, 1.5, True, "3"])
    def test_rejects_bad_k(self, four_point_cloud, k):
        """Raises InvalidArgumentError for a non-positive or non-integral k."""
        with pytest.raises(InvalidArgumentError, match="k must be"):
            find_nearest_neighbors(four_point_cloud, [0, 0, 0], k)

    def test_accepts_integral_float_k(self, four_point_cloud):
        """A float k with an integral value is accepted."""
        indices, _ = find_nearest_neighbors(four_point_cloud, [0, 0, 0], 2.0)
        assert indices.numel() == 2

    @pytest.mark.parametrize(
        "point",
        [[0.0, 0.0], [0.0, 0.0, 0.0, 0.0], [math.nan, 0.0, 0.0], [math.inf, 0, 0]],
    )
    def test_rejects_bad_point(self, four_point_cloud, point):
        """Raises InvalidArgumentError for a point that is not a finite 3-vector."""
        with pytest.raises(InvalidArgumentError, match="point"):
            find_nearest_neighbors(four_point_cloud, point, 1)
        with pytest.raises(InvalidArgumentError, match="point"):
            find_neighbors_in_radius(four_point_cloud, point, 1.0)

    def test_rejects_non_numeric_point(self, four_point_cloud):
        """Raises InvalidArgumentError for a point of strings."""
        with pytest.raises(InvalidArgumentError, match="point"):
            find_nearest_neighbors(four_point_cloud, "origin", 1)

    @pytest.mark.parametrize("radius", [-0.5, math.inf, math.nan, "far"])
    def test_rejects_bad_radius(self, four_point_cloud, radius):
        """Raises InvalidArgumentError for a negative or non-finite radius."""
        with pytest.raises(InvalidArgumentError, match="radius"):
            find_neighbors_in_radius(four_point_cloud, [0, 0, 0], radius)

    def test_rejects_inverted_roi(self, four_point_cloud):
        """Raises InvalidArgumentError when a lower bound exceeds its upper bound."""
        with pytest.raises(InvalidArgumentError, match="minimum"):
            find_points_in_roi(four_point_cloud, [[0, 1], [2, 1], [0, 1]])

    @pytest.mark.parametrize(
        "roi", [[[0, 1], [0, 1]], [0, 1, 0, 1, 0, 1], [[0, 1, 2]] * 3]
    )
    def test_rejects_roi_shape(self, four_point_cloud, roi):
        """Raises InvalidArgumentError unless the ROI is 3 x 2."""
        with pytest.raises(InvalidArgumentError, match="shape"):
            find_points_in_roi(four_point_cloud, roi)

    def test_rejects_nan_roi(self, four_point_cloud):
        """Raises InvalidArgumentError for a NaN bound."""
        with pytest.raises(InvalidArgumentError, match="NaN"):
            find_points_in_roi(four_point_cloud, [[0, math.nan], [0, 1], [0, 1]])

    def test_rejects_bad_options(self, four_point_cloud):
        """Raises InvalidArgumentError for bad search options."""
        with pytest.raises(InvalidArgumentError, match="max_leaf_checks"):
            find_nearest_neighbors(
                four_point_cloud, [0, 0, 0], 1, max_leaf_checks=-4
            )
        with pytest.raises(InvalidArgumentError, match="SearchOptions"):
            find_nearest_neighbors(
                four_point_cloud, [0, 0, 0], 1, options={"sort": True}
            )


class TestEmptyCloud:
    def test_queries_return_empty(self):
        """Every query on an empty cloud is empty."""
        cloud = PointCloud(torch.empty(0, 3))
        assert find_nearest_neighbors(cloud, [0, 0, 0], 3).indices.numel() == 0
        assert find_neighbors_in_radius(cloud, [0, 0, 0], 1).indices.numel() == 0
        assert find_points_in_roi(cloud, _UNBOUNDED).numel() == 0

    def test_all_invalid_cloud(self):
        """A cloud of NaN rows has no neighbors."""
        cloud = PointCloud(torch.full((600, 3), math.nan))
        assert find_nearest_neighbors(cloud, [0, 0, 0], 3).indices.numel() == 0


class TestStrategySelection:
    """Clouds below the threshold are scanned, larger ones are indexed."""

    def test_threshold_value(self):
        """The linear-scan threshold is 500 points."""
        assert BRUTE_FORCE_THRESHOLD == 500

    def test_small_cloud_never_builds_index(self):
        """Clouds below the threshold are scanned."""
        cloud = PointCloud(torch.rand(BRUTE_FORCE_THRESHOLD - 1, 3))
        find_nearest_neighbors(cloud, [0.5, 0.5, 0.5], 3)
        find_neighbors_in_radius(cloud, [0.5, 0.5, 0.5], 0.1)
        find_points_in_roi(cloud, _UNBOUNDED)
        assert not cloud._index.is_built

    def test_threshold_cloud_builds_index_once(self):
        """A cloud at the threshold builds one tree for all queries."""
        cloud = PointCloud(torch.rand(BRUTE_FORCE_THRESHOLD, 3))
        find_nearest_neighbors(cloud, [0.5, 0.5, 0.5], 3)
        find_neighbors_in_radius(cloud, [0.5, 0.5, 0.5], 0.1)
        find_points_in_roi(cloud, _UNBOUNDED)
        assert cloud._index.is_built
        assert cloud._index.build_count == 1

    def test_small_cloud_results_are_sorted(self):
        """Scanned kNN results come back sorted."""
        torch.manual_seed(0)
        cloud = PointCloud(torch.rand(100, 3))
        _, distances = find_nearest_neighbors(cloud, [0.5, 0.5, 0.5], 20)
        torch.testing.assert_close(distances, torch.sort(distances)[0])

    @hypothesis.settings(deadline=None, max_examples=50)
    @hypothesis.given(
        location=coordinates(max_points=60, allow_non_finite=True),
        query=_query_points(),
        k=hypothesis.strategies.integers(min_value=1, max_value=70),
        radius=real_numbers(0.0, 150.0),
    )
    def test_small_cloud_matches_brute_force(self, location, query, k, radius):
        """Small clouds agree with the linear-scan reference."""
        cloud = PointCloud(location)

        indices, distances = find_nearest_neighbors(cloud, query, k)
        expected, expected_squared = brute_force_k_nearest_neighbors(
            location, query, k
        )
        torch.testing.assert_close(indices, expected)
        torch.testing.assert_close(distances, torch.sqrt(expected_squared))

        indices, _ = find_neighbors_in_radius(cloud, query, radius)
        expected, _ = brute_force_range_search(location, query, radius)
        assert set(indices.tolist()) == set(expected.tolist())


class TestIndexedQueries:
    """Queries on clouds large enough for the k-d tree."""

    def test_nearest_matches_scipy(self, large_cloud, large_points):
        """Indexed kNN matches scipy's cKDTree."""
        reference = scipy.spatial.cKDTree(large_points.numpy())
        generator = torch.Generator().manual_seed(5)
        for query in torch.rand(10, 3, dtype=torch.float64, generator=generator):
            indices, distances = find_nearest_neighbors(
                large_cloud, query, 6, sort=True
            )
            expected_distances, expected_indices = reference.query(
                query.numpy(), k=6
            )
            assert indices.tolist() == expected_indices.tolist()
            torch.testing.assert_close(
                distances, torch.from_numpy(expected_distances)
            )

    def test_radius_matches_scipy(self, large_cloud, large_points):
        """Indexed radius search matches scipy's cKDTree."""
        reference = scipy.spatial.cKDTree(large_points.numpy())
        query = torch.tensor([0.2, 0.8, 0.5], dtype=torch.float64)

        indices, distances = find_neighbors_in_radius(
            large_cloud, query, 0.15, sort=True
        )

        expected = reference.query_ball_point(query.numpy(), 0.15)
        assert sorted(indices.tolist()) == sorted(expected)
        torch.testing.assert_close(distances, torch.sort(distances)[0])
        assert (distances <= 0.15).all()

    def test_unbounded_roi_returns_every_index(self, large_cloud):
        """An infinite ROI returns every finite index in order."""
        indices = find_points_in_roi(large_cloud, _UNBOUNDED)
        assert indices.tolist() == list(range(large_cloud.count))

    def test_roi_includes_infinite_points(self):
        """ROI queries keep inf rows and drop NaN rows."""
        location = torch.rand(600, 3)
        location[10] = torch.tensor([math.inf, 0.5, 0.5])
        location[20] = torch.tensor([math.nan, 0.5, 0.5])
        cloud = PointCloud(location)

        everything = find_points_in_roi(cloud, _UNBOUNDED)
        bounded = find_points_in_roi(cloud, [[0, 1], [0, 1], [0, 1]])

        assert 10 in everything.tolist()
        assert 20 not in everything.tolist()
        assert everything.numel() == 599
        assert 10 not in bounded.tolist()
        assert bounded.numel() == 598

    def test_neighbors_skip_non_finite_points(self):
        """Rows with NaN are never neighbors."""
        location = torch.rand(600, 3, dtype=torch.float64)
        location[:100, 0] = math.nan
        cloud = PointCloud(location)
        indices, _ = find_nearest_neighbors(cloud, [0.5, 0.5, 0.5], 600)
        assert indices.numel() == 500
        assert (indices >= 100).all()

    def test_organized_roi_indices_are_row_major(self):
        """ROI indices on a grid are row-major."""
        location = torch.zeros(30, 20, 3)
        location[7, 11] = torch.tensor([5.0, 5.0, 5.0])
        cloud = PointCloud(location)
        indices = find_points_in_roi(cloud, [[4, 6], [4, 6], [4, 6]])
        assert indices.tolist() == [7 * 20 + 11]

    def test_bounded_search_options(self, large_cloud):
        """A leaf budget returns fewer, no closer neighbors."""
        query = [0.5, 0.5, 0.5]
        exact = find_nearest_neighbors(large_cloud, query, 50)
        bounded = find_nearest_neighbors(
            large_cloud, query, 50, max_leaf_checks=1, sort=True
        )
        assert 0 < bounded.indices.numel() < 50
        assert (bounded.distances >= exact.distances[: bounded.indices.numel()]).all()

    def test_options_object_takes_precedence(self, large_cloud):
        """A SearchOptions object overrides the keyword arguments."""
        query = [0.5, 0.5, 0.5]
        result = find_nearest_neighbors(
            large_cloud,
            query,
            50,
            max_leaf_checks=None,
            options=SearchOptions(max_leaf_checks=1),
        )
        assert result.indices.numel() < 50

    def test_infinite_leaf_checks_is_exact(self, large_cloud):
        """max_leaf_checks=inf gives the exact answer."""
        query = [0.1, 0.2, 0.3]
        exact = find_nearest_neighbors(large_cloud, query, 9)
        unbounded = find_nearest_neighbors(
            large_cloud, query, 9, max_leaf_checks=math.inf
        )
        torch.testing.assert_close(exact.indices, unbounded.indices)


class TestBatchedNearestNeighbors:
    """Tests for many-query nearest-neighbor search."""

    def test_shapes(self, large_cloud):
        """Batched results are (m, k) with per-row counts."""
        result = find_nearest_neighbors_batched(
            large_cloud, torch.rand(5, 3, dtype=torch.float64), 4
        )
        assert isinstance(result, BatchedNeighborSearchResult)
        assert result.indices.shape == (5, 4)
        assert result.distances.shape == (5, 4)
        assert result.counts.tolist() == [4] * 5

    def test_matches_single_queries(self, large_cloud):
        """Each batched row equals the single-query result."""
        queries = torch.rand(6, 3, dtype=torch.float64)
        batched = large_cloud.find_nearest_neighbors_batched(queries, 3)
        for row, query in enumerate(queries):
            single = large_cloud.find_nearest_neighbors(query, 3, sort=True)
            torch.testing.assert_close(batched.indices[row], single.indices)
            torch.testing.assert_close(batched.distances[row], single.distances)

    def test_small_cloud_uses_tree(self, four_point_cloud):
        """Batched queries build the tree even on small clouds."""
        result = find_nearest_neighbors_batched(
            four_point_cloud, [[0, 0, 0], [5, 5, 5]], 10
        )
        assert four_point_cloud._index.is_built
        assert result.indices.shape == (2, 4)
        assert result.indices[1, 0] == 3

    def test_pads_when_points_are_missing(self):
        """Rows are padded with -1 and inf past the valid count."""
        location = torch.rand(10, 3)
        location[:4] = math.nan
        result = find_nearest_neighbors_batched(PointCloud(location), [[0, 0, 0]], 8)
        assert result.counts.tolist() == [6]
        assert (result.indices[0, 6:] == -1).all()
        assert torch.isinf(result.distances[0, 6:]).all()

    @pytest.mark.parametrize(
        "points", [[0.0, 0.0, 0.0], [[0.0, 0.0]], [[math.nan, 0.0, 0.0]]]
    )
    def test_rejects_bad_points(self, four_point_cloud, points):
        """Raises InvalidArgumentError unless points is a finite (m, 3) matrix."""
        with pytest.raises(InvalidArgumentError, match="points"):
            find_nearest_neighbors_batched(four_point_cloud, points, 1)

    def test_empty_cloud(self):
        """Batched queries on an empty cloud have zero columns."""
        result = find_nearest_neighbors_batched(
            PointCloud(torch.empty(0, 3)), torch.zeros(2, 3), 3
        )
        assert result.indices.shape == (2, 0)
        assert result.counts.tolist() == [0, 0]
