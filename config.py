# config.py

import os
from dataclasses import dataclass
from typing import Optional

from errors import InvalidParameter

DEFAULT_K = 4
DEFAULT_MAX_ITERATIONS = 100
CONVERGENCE_TOLERANCE = 1e-5
DEFAULT_SEED = 42
DEFAULT_CHUNK_SIZE = 16384  # pixels per worker partition
DISTANCE_BLOCK_ELEMENTS = 1 << 20  # cap on chunk x k distance entries per worker

INIT_POLICIES = ('random', 'first', 'kmeans++')
EMPTY_CLUSTER_POLICIES = ('farthest', 'retain')


def default_workers():
    """Same default as concurrent.futures.ThreadPoolExecutor."""
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(frozen=True)
class ClusterConfig:
    """
    Tunables for the K-Means engine.

    Attributes:
        init: Seeding policy, one of INIT_POLICIES.
        seed: Random seed for the 'random' and 'kmeans++' policies.
        empty_policy: What to do with a cluster that receives no pixels.
        allow_duplicate_seeds: Allow k to exceed the number of distinct colors
            by repeating seed colors instead of failing.
        tolerance: Total centroid shift below which the loop stops.
        workers: Worker threads for the assignment and update steps.
        chunk_size: Pixels per worker partition.
    """
    init: str = 'random'
    seed: Optional[int] = DEFAULT_SEED
    empty_policy: str = 'farthest'
    allow_duplicate_seeds: bool = True
    tolerance: float = CONVERGENCE_TOLERANCE
    workers: Optional[int] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self):
        if self.init not in INIT_POLICIES:
            raise InvalidParameter(
                f"Unknown init policy {self.init!r}, expected one of {', '.join(INIT_POLICIES)}")
        if self.empty_policy not in EMPTY_CLUSTER_POLICIES:
            raise InvalidParameter(
                f"Unknown empty-cluster policy {self.empty_policy!r}, "
                f"expected one of {', '.join(EMPTY_CLUSTER_POLICIES)}")
        if self.tolerance < 0:
            raise InvalidParameter(f"tolerance must be >= 0, got {self.tolerance}")
        if self.workers is not None and self.workers < 1:
            raise InvalidParameter(f"workers must be >= 1, got {self.workers}")
        if self.chunk_size < 1:
            raise InvalidParameter(f"chunk_size must be >= 1, got {self.chunk_size}")

    @property
    def worker_count(self):
        return self.workers if self.workers is not None else default_workers()
