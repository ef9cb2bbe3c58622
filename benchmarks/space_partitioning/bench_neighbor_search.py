"""Benchmarks for point cloud neighbor search.

Compares the linear scan against the k-d tree for nearest-neighbor,
radius and box queries, across cloud sizes on both sides of
``BRUTE_FORCE_THRESHOLD``.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import numpy as np
import torch

from torchcloud.point_cloud import BRUTE_FORCE_THRESHOLD
from torchcloud.space_partitioning import (
    box_search,
    brute_force_box_search,
    brute_force_k_nearest_neighbors,
    brute_force_range_search,
    k_nearest_neighbors,
    kd_tree,
    range_search,
)


def format_time(seconds: float) -> str:
    """Format time in us, ms or s."""
    if seconds < 1e-3:
        return f"{seconds * 1e6:.1f}us"
    elif seconds < 1:
        return f"{seconds * 1e3:.2f}ms"
    return f"{seconds:.3f}s"


def print_comparison(name: str, times: dict[str, tuple[float, float]]) -> None:
    """Print mean and spread per method, relative to the fastest."""
    print(f"\n{name}")
    print("-" * len(name))

    fastest = min(mean for mean, _ in times.values())
    for method_name, (mean, std) in times.items():
        ratio = mean / fastest
        suffix = " (fastest)" if ratio <= 1.01 else f" ({ratio:.2f}x slower)"
        print(
            f"  {method_name}: {format_time(mean)} +/- {format_time(std)}{suffix}"
        )


def generate_points(count: int, seed: int = 0) -> torch.Tensor:
    generator = torch.Generator().manual_seed(seed)
    return torch.rand(count, 3, dtype=torch.float64, generator=generator)


class BenchNeighborSearch:
    """Benchmarks for the linear scan and k-d tree searches."""

    def __init__(self, warmup: int = 3, iterations: int = 10):
        """Initialize benchmark runner.

        Parameters
        ----------
        warmup : int, optional
            Number of warmup iterations. Default is 3.
        iterations : int, optional
            Number of timed iterations. Default is 10.
        """
        self.warmup = warmup
        self.iterations = iterations

    def _bench(
        self, func: Callable, *args: Any, **kwargs: Any
    ) -> tuple[float, float]:
        """Return the mean and standard deviation of func's run time."""
        for _ in range(self.warmup):
            func(*args, **kwargs)

        times = []
        for _ in range(self.iterations):
            start = time.perf_counter()
            func(*args, **kwargs)
            times.append(time.perf_counter() - start)

        return float(np.mean(times)), float(np.std(times))

    def bench_build(self, count: int = 10000) -> None:
        """Benchmark k-d tree construction."""
        points = generate_points(count)

        times = {
            f"leaf_size={leaf_size}": self._bench(
                kd_tree, points, leaf_size=leaf_size
            )
            for leaf_size in (4, 10, 32)
        }

        print_comparison(f"kd_tree build (points={count})", times)

    def bench_k_nearest_neighbors(self, count: int = 1000, k: int = 8) -> None:
        """Benchmark a single kNN query, linear scan vs tree.

        Parameters
        ----------
        count : int, optional
            Number of points in the cloud. Default is 1000.
        k : int, optional
            Number of neighbors. Default is 8.
        """
        points = generate_points(count)
        query = torch.full((3,), 0.5, dtype=torch.float64)
        tree = kd_tree(points)

        times = {
            "brute_force": self._bench(
                brute_force_k_nearest_neighbors, points, query, k
            ),
            "kd_tree": self._bench(
                k_nearest_neighbors, tree, query.unsqueeze(0), k
            ),
            "kd_tree (16 leaves)": self._bench(
                k_nearest_neighbors,
                tree,
                query.unsqueeze(0),
                k,
                max_leaf_checks=16,
            ),
        }

        print_comparison(f"k nearest neighbors (points={count}, k={k})", times)

    def bench_range_search(self, count: int = 1000, radius: float = 0.1) -> None:
        """Benchmark a single radius query, linear scan vs tree."""
        points = generate_points(count)
        query = torch.full((3,), 0.5, dtype=torch.float64)
        tree = kd_tree(points)

        times = {
            "brute_force": self._bench(
                brute_force_range_search, points, query, radius
            ),
            "kd_tree": self._bench(range_search, tree, query, radius),
        }

        print_comparison(
            f"range search (points={count}, radius={radius})", times
        )

    def bench_box_search(self, count: int = 1000, width: float = 0.2) -> None:
        """Benchmark a box query, linear scan vs tree."""
        points = generate_points(count)
        roi = torch.tensor(
            [[0.5 - width / 2, 0.5 + width / 2]] * 3, dtype=torch.float64
        )
        tree = kd_tree(points)

        times = {
            "brute_force": self._bench(brute_force_box_search, points, roi),
            "kd_tree": self._bench(box_search, tree, roi),
        }

        print_comparison(f"box search (points={count}, width={width})", times)

    def bench_batched(self, count: int = 10000, queries: int = 64) -> None:
        """Benchmark batched kNN against a loop of linear scans."""
        points = generate_points(count)
        query_points = generate_points(queries, seed=1)
        tree = kd_tree(points)

        def loop():
            for query in query_points:
                brute_force_k_nearest_neighbors(points, query, 8)

        times = {
            "brute_force loop": self._bench(loop),
            "kd_tree batched": self._bench(
                k_nearest_neighbors, tree, query_points, 8
            ),
        }

        print_comparison(
            f"batched kNN (points={count}, queries={queries})", times
        )

    def run_all(self) -> None:
        """Run all benchmarks."""
        print("=" * 60)
        print("NEIGHBOR SEARCH BENCHMARKS")
        print("=" * 60)

        self.bench_build()
        self.bench_k_nearest_neighbors()
        self.bench_range_search()
        self.bench_box_search()
        self.bench_batched()

    def run_scaling(self) -> None:
        """Run scaling benchmarks around the brute force threshold."""
        print("=" * 60)
        print(f"SCALING BENCHMARKS (threshold={BRUTE_FORCE_THRESHOLD})")
        print("=" * 60)

        for count in [100, 250, 500, 1000, 5000, 20000]:
            self.bench_k_nearest_neighbors(count=count)

        for count in [100, 500, 5000, 20000]:
            self.bench_range_search(count=count)


if __name__ == "__main__":
    bench = BenchNeighborSearch(warmup=3, iterations=10)
    bench.run_all()
    print("\n")
    bench.run_scaling()
