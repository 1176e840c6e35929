# cluster_engine.py

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from functools import partial
from typing import Optional, Tuple

import numpy as np
from sklearn.cluster import kmeans_plusplus

from color_vector import as_color_vectors, pairwise_squared_distances, rounded_mean
from config import DEFAULT_MAX_ITERATIONS, DISTANCE_BLOCK_ELEMENTS, ClusterConfig
from errors import EmptyInput, InvalidParameter


@dataclass(frozen=True)
class ClusterState:
    """Centroids and assignments of one iteration. Replaced, never modified."""
    centroids: np.ndarray  # (K, C) int64
    assignments: Optional[np.ndarray] = None  # (N,) int64, None before the first assignment
    iteration: int = 0


@dataclass(frozen=True)
class ClusterResult:
    centroids: np.ndarray  # (K, C) uint8
    assignments: np.ndarray  # (N,) int64, raster order
    iterations: int
    converged: bool
    cost_history: Tuple[int, ...]  # assignment cost of each iteration
    cost: int  # cost of the returned assignments against the returned centroids

    @property
    def k(self):
        return len(self.centroids)

    @property
    def counts(self):
        return np.bincount(self.assignments, minlength=self.k)


# --------------------------------------------------------------------------------------------------
# Initialization
# --------------------------------------------------------------------------------------------------

def distinct_colors(pixels):
    """Distinct colors of `pixels`, ordered by first appearance in raster order."""
    colors, first_index = np.unique(pixels, axis=0, return_index=True)
    return colors[np.argsort(first_index, kind='stable')]


def seed_centroids(pixels, k, config):
    """
    Picks the k starting centroids from the input colors.

    'random' samples distinct colors without replacement, 'first' takes the
    first k distinct colors in raster order and 'kmeans++' runs scikit-learn's
    k-means++ seeding over the distinct colors. With a fixed seed all three
    are reproducible.

    When the image has fewer than k distinct colors, every distinct color is
    used and the rest of the seeds repeat them in order, unless
    config.allow_duplicate_seeds is False.

    Returns:
        (k, C) int64 array.
    """
    colors = distinct_colors(pixels)
    if len(colors) < k:
        if not config.allow_duplicate_seeds:
            raise InvalidParameter(
                f"k={k} exceeds the {len(colors)} distinct colors in the image")
        logging.warning(f"Only {len(colors)} distinct colors for k={k}; repeating seed colors")
        return colors[np.arange(k) % len(colors)].astype(np.int64)

    if config.init == 'first':
        seeds = colors[:k]
    elif config.init == 'kmeans++':
        _, indices = kmeans_plusplus(colors.astype(np.float64), n_clusters=k,
                                     random_state=config.seed)
        seeds = colors[indices]
    else:
        rng = np.random.default_rng(config.seed)
        seeds = colors[rng.choice(len(colors), size=k, replace=False)]
    return seeds.astype(np.int64)


# --------------------------------------------------------------------------------------------------
# Partitioned steps
# --------------------------------------------------------------------------------------------------

def partition(n, chunk_size):
    """Contiguous slices covering range(n)."""
    return [slice(start, min(start + chunk_size, n)) for start in range(0, n, chunk_size)]


def chunk_length(chunk_size, k):
    """Pixels per partition, shrunk so a worker's (chunk, k) distance block stays bounded."""
    return max(1, min(chunk_size, DISTANCE_BLOCK_ELEMENTS // k))


def _map(executor, fn, parts):
    if executor is None:
        return map(fn, parts)
    return executor.map(fn, parts)


def _nearest_in_part(pixels, centroids, part):
    distances = pairwise_squared_distances(pixels[part], centroids)
    labels = np.argmin(distances, axis=1)  # first minimum wins ties
    return part, labels, distances[np.arange(len(labels)), labels]


def assign_pixels(pixels, centroids, parts, executor=None):
    """
    Nearest-centroid index and squared distance for every pixel.

    Each partition is computed independently; results land in disjoint slices
    of fresh arrays, so completion order does not matter.
    """
    labels = np.empty(len(pixels), dtype=np.int64)
    distances = np.empty(len(pixels), dtype=np.int64)
    for part, part_labels, part_distances in _map(executor, partial(_nearest_in_part, pixels, centroids), parts):
        labels[part] = part_labels
        distances[part] = part_distances
    return labels, distances


def reseed_empty_clusters(labels, distances, k):
    """
    Gives every empty cluster the pixel farthest from its own centroid.

    Empty clusters are filled in ascending index order. Donor pixels come only
    from clusters with more than one member, and the lowest pixel index wins
    ties, so the outcome is deterministic.

    Returns:
        (labels, reseeded cluster indices). `labels` is a new array when
        anything moved.
    """
    counts = np.bincount(labels, minlength=k)
    empty = np.flatnonzero(counts == 0)
    if not empty.size:
        return labels, []

    labels = labels.copy()
    reseeded = []
    for cluster in empty:
        candidates = np.where(counts[labels] > 1, distances, -1)
        pixel = int(np.argmax(candidates))
        if candidates[pixel] < 0:
            break
        counts[labels[pixel]] -= 1
        counts[cluster] += 1
        labels[pixel] = cluster
        reseeded.append(int(cluster))
    return labels, reseeded


def _partial_sums(pixels, labels, k, part):
    sums = np.zeros((k, pixels.shape[1]), dtype=np.int64)
    np.add.at(sums, labels[part], pixels[part])
    return sums, np.bincount(labels[part], minlength=k)


def update_centroids(pixels, labels, previous, parts, executor=None):
    """
    Rounded mean of the members of each cluster.

    Every partition produces its own partial sums and counts; they are merged
    by addition once all partitions are done. A cluster with no members keeps
    its previous centroid.
    """
    k = len(previous)
    sums = np.zeros((k, pixels.shape[1]), dtype=np.int64)
    counts = np.zeros(k, dtype=np.int64)
    for part_sums, part_counts in _map(executor, partial(_partial_sums, pixels, labels, k), parts):
        sums += part_sums
        counts += part_counts
    means = rounded_mean(sums, counts)
    return np.where(counts[:, None] > 0, means, previous)


def assignment_cost(pixels, centroids, labels):
    diff = pixels.astype(np.int64) - np.asarray(centroids, dtype=np.int64)[labels]
    return int(np.einsum('nc,nc->', diff, diff))


# --------------------------------------------------------------------------------------------------
# Main loop
# --------------------------------------------------------------------------------------------------

def _validate(pixels, k, max_iterations):
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise InvalidParameter(f"k must be a positive integer, got {k!r}")
    if isinstance(max_iterations, bool) or not isinstance(max_iterations, (int, np.integer)) \
            or max_iterations < 1:
        raise InvalidParameter(f"max_iterations must be a positive integer, got {max_iterations!r}")
    if len(pixels) == 0:
        raise EmptyInput("No pixels to cluster")
    if k > len(pixels):
        raise InvalidParameter(f"k={k} exceeds the number of pixels ({len(pixels)})")


def step(state, pixels, config, parts, executor=None):
    """
    One Lloyd iteration: assign, handle empty clusters, update.

    Returns:
        (next state, assignment cost, converged flag)
    """
    k = len(state.centroids)
    labels, distances = assign_pixels(pixels, state.centroids, parts, executor)
    cost = int(distances.sum())

    reseeded = []
    if config.empty_policy == 'farthest':
        labels, reseeded = reseed_empty_clusters(labels, distances, k)

    centroids = update_centroids(pixels, labels, state.centroids, parts, executor)

    if state.assignments is None:
        changed = len(labels)
    else:
        changed = int(np.count_nonzero(labels != state.assignments))
    shift = float(np.sqrt(((centroids - state.centroids) ** 2).sum(axis=1)).sum())

    iteration = state.iteration + 1
    logging.debug(f"Iteration {iteration}: cost={cost}, changed={changed}, shift={shift:.3f}"
                  + (f", reseeded clusters {reseeded}" if reseeded else ""))

    converged = changed == 0 or shift < config.tolerance
    return ClusterState(centroids=centroids, assignments=labels, iteration=iteration), cost, converged


def cluster(pixels, k, max_iterations=DEFAULT_MAX_ITERATIONS, config=None):
    """
    Clusters pixel colors into k centroids with Lloyd's K-Means.

    The input is never modified. The assignment and update steps are split
    into partitions that run on a thread pool; each step finishes completely
    before the next one reads its results.

    Args:
        pixels: (N, C) array-like of uint8 color vectors in raster order.
        k: Number of clusters, 1 <= k <= N.
        max_iterations: Upper bound on the number of iterations.
        config: ClusterConfig, defaults used when None.

    Returns:
        ClusterResult with k centroids and one assignment per pixel.
    """
    config = config or ClusterConfig()
    pixels = as_color_vectors(pixels)
    _validate(pixels, k, max_iterations)

    state = ClusterState(centroids=seed_centroids(pixels, k, config))
    parts = partition(len(pixels), chunk_length(config.chunk_size, k))
    workers = min(config.worker_count, len(parts))
    logging.debug(f"Clustering {len(pixels)} pixels into k={k} with {workers} worker(s), "
                  f"init={config.init}, empty_policy={config.empty_policy}")

    cost_history = []
    converged = False
    pool = ThreadPoolExecutor(max_workers=workers) if workers > 1 else nullcontext()
    with pool as executor:
        while state.iteration < max_iterations:
            state, cost, converged = step(state, pixels, config, parts, executor)
            cost_history.append(cost)
            if converged:
                break

    if converged:
        logging.info(f"K-Means converged after {state.iteration} iterations")
    else:
        logging.info(f"K-Means stopped at the iteration cap ({max_iterations}) without converging")

    return ClusterResult(
        centroids=state.centroids.astype(np.uint8),
        assignments=state.assignments,
        iterations=state.iteration,
        converged=converged,
        cost_history=tuple(cost_history),
        cost=assignment_cost(pixels, state.centroids, state.assignments),
    )
