import logging
import tracemalloc

import numpy as np
import pytest

from cluster_engine import (ClusterState, assign_pixels, chunk_length, cluster, distinct_colors,
                            partition, reseed_empty_clusters, seed_centroids, step,
                            update_centroids)
from color_vector import mean_color
from config import DISTANCE_BLOCK_ELEMENTS, ClusterConfig
from errors import EmptyInput, InvalidParameter

BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


def as_tuples(array):
    return [tuple(int(c) for c in row) for row in array]


def test_two_tone_image_converges_to_both_colors(two_tone_pixels):
    result = cluster(two_tone_pixels, 2)

    assert sorted(as_tuples(result.centroids)) == [BLACK, WHITE]
    assert result.converged
    assert result.cost == 0
    assert as_tuples(result.centroids[result.assignments]) == as_tuples(two_tone_pixels)


def test_returns_k_centroids_and_one_assignment_per_pixel(noisy_pixels):
    result = cluster(noisy_pixels, 5)

    assert result.centroids.shape == (5, 3)
    assert result.centroids.dtype == np.uint8
    assert result.assignments.shape == (len(noisy_pixels),)
    assert result.assignments.min() >= 0
    assert result.assignments.max() < 5


def test_does_not_modify_input(noisy_pixels):
    before = noisy_pixels.copy()
    cluster(noisy_pixels, 4)

    assert np.array_equal(noisy_pixels, before)
    assert noisy_pixels.flags.writeable


def test_cost_never_increases(noisy_pixels):
    for init in ('random', 'first', 'kmeans++'):
        result = cluster(noisy_pixels, 6, max_iterations=50, config=ClusterConfig(init=init))
        history = result.cost_history
        assert all(later <= earlier for earlier, later in zip(history, history[1:])), init
        assert result.cost <= history[-1]


def test_single_cluster_is_mean_of_all_pixels(noisy_pixels):
    result = cluster(noisy_pixels, 1)

    assert as_tuples(result.centroids) == as_tuples([mean_color(noisy_pixels)])
    assert set(result.assignments.tolist()) == {0}


def test_k_equal_to_distinct_colors_has_zero_cost():
    colors = np.array([(10, 20, 30), (200, 0, 0), (0, 200, 0)], dtype=np.uint8)
    pixels = colors[[0, 1, 2, 1, 0, 2, 2, 1]]

    for init in ('random', 'first'):
        result = cluster(pixels, 3, config=ClusterConfig(init=init))
        assert result.cost == 0
        assert result.cost_history[0] == 0
        assert sorted(as_tuples(result.centroids)) == sorted(as_tuples(colors))


def test_more_clusters_than_colors_repeats_centroids():
    pixels = np.array([BLACK] * 3 + [WHITE] * 3, dtype=np.uint8)
    result = cluster(pixels, 4)

    assert len(result.centroids) == 4
    assert set(as_tuples(result.centroids)) == {BLACK, WHITE}
    assert result.counts.min() >= 1
    assert as_tuples(result.centroids[result.assignments]) == as_tuples(pixels)


def test_more_clusters_than_colors_fails_without_fallback():
    pixels = np.array([BLACK] * 3 + [WHITE] * 3, dtype=np.uint8)
    with pytest.raises(InvalidParameter):
        cluster(pixels, 4, config=ClusterConfig(allow_duplicate_seeds=False))


def test_retain_policy_keeps_empty_centroids():
    pixels = np.array([BLACK] * 3 + [WHITE] * 3, dtype=np.uint8)
    result = cluster(pixels, 4, config=ClusterConfig(empty_policy='retain'))

    assert result.counts.tolist() == [3, 3, 0, 0]
    assert as_tuples(result.centroids) == [BLACK, WHITE, BLACK, WHITE]


@pytest.mark.parametrize('k', [0, -1, 7, 2.5, True])
def test_invalid_k(two_tone_pixels, k):
    with pytest.raises(InvalidParameter):
        cluster(two_tone_pixels, k)


def test_invalid_max_iterations(two_tone_pixels):
    with pytest.raises(InvalidParameter):
        cluster(two_tone_pixels, 2, max_iterations=0)


def test_empty_input():
    with pytest.raises(EmptyInput):
        cluster(np.empty((0, 3), dtype=np.uint8), 1)


def test_iteration_cap(noisy_pixels):
    result = cluster(noisy_pixels, 5, max_iterations=1)

    assert result.iterations == 1
    assert len(result.cost_history) == 1


def test_same_result_for_any_partitioning(noisy_pixels):
    serial = cluster(noisy_pixels, 5, config=ClusterConfig(workers=1, chunk_size=10_000))
    parallel = cluster(noisy_pixels, 5, config=ClusterConfig(workers=4, chunk_size=7))

    assert np.array_equal(serial.centroids, parallel.centroids)
    assert np.array_equal(serial.assignments, parallel.assignments)
    assert serial.cost_history == parallel.cost_history


def test_repeated_runs_are_identical(noisy_pixels):
    for init in ('random', 'first', 'kmeans++'):
        config = ClusterConfig(init=init, seed=3)
        first = cluster(noisy_pixels, 4, config=config)
        second = cluster(noisy_pixels, 4, config=config)
        assert np.array_equal(first.centroids, second.centroids)
        assert np.array_equal(first.assignments, second.assignments)


def test_logs_convergence(two_tone_pixels, caplog):
    caplog.set_level(logging.INFO)
    cluster(two_tone_pixels, 2)
    assert 'converged' in caplog.text


def test_distinct_colors_in_raster_order():
    pixels = np.array([[9], [1], [9], [5], [1]], dtype=np.uint8)
    assert distinct_colors(pixels).tolist() == [[9], [1], [5]]


def test_first_seeding_takes_first_distinct_colors():
    pixels = np.array([[5], [5], [9], [1]], dtype=np.uint8)
    seeds = seed_centroids(pixels, 2, ClusterConfig(init='first'))
    assert seeds.tolist() == [[5], [9]]


def test_random_seeding_picks_distinct_input_colors(noisy_pixels):
    seeds = seed_centroids(noisy_pixels, 10, ClusterConfig(init='random', seed=1))
    input_colors = set(as_tuples(noisy_pixels))

    assert len(set(as_tuples(seeds))) == 10
    assert set(as_tuples(seeds)) <= input_colors


def test_partition_covers_every_index():
    parts = partition(10, 4)
    assert [(p.start, p.stop) for p in parts] == [(0, 4), (4, 8), (8, 10)]


def test_assignment_ties_go_to_lowest_index():
    pixels = np.array([[5, 5, 5]], dtype=np.uint8)
    centroids = np.array([[0, 5, 5], [10, 5, 5], [5, 5, 5], [5, 5, 5]])
    labels, distances = assign_pixels(pixels, centroids, partition(1, 1))
    assert labels.tolist() == [2]
    assert distances.tolist() == [0]


def test_reseed_moves_farthest_pixel_into_empty_cluster():
    labels = np.array([0, 0, 0, 1])
    distances = np.array([1, 9, 4, 0])

    new_labels, reseeded = reseed_empty_clusters(labels, distances, 3)

    assert new_labels.tolist() == [0, 2, 0, 1]
    assert reseeded == [2]
    assert labels.tolist() == [0, 0, 0, 1]


def test_reseed_never_empties_a_donor():
    labels = np.array([0, 1, 1])
    distances = np.array([50, 3, 3])

    new_labels, reseeded = reseed_empty_clusters(labels, distances, 3)

    assert new_labels.tolist() == [0, 2, 1]
    assert reseeded == [2]


def test_update_keeps_previous_centroid_for_empty_cluster():
    pixels = np.array([[0, 0, 0], [2, 2, 3]], dtype=np.uint8)
    previous = np.array([[9, 9, 9], [7, 7, 7]])
    centroids = update_centroids(pixels, np.array([0, 0]), previous, partition(2, 1))
    assert centroids.tolist() == [[1, 1, 2], [7, 7, 7]]


def test_step_builds_a_new_state(two_tone_pixels):
    seeds = np.array([BLACK, WHITE], dtype=np.int64)
    state = ClusterState(centroids=seeds)

    next_state, cost, converged = step(state, two_tone_pixels, ClusterConfig(), partition(4, 2))

    assert next_state is not state
    assert state.assignments is None
    assert next_state.iteration == 1
    assert next_state.assignments.tolist() == [0, 0, 1, 1]
    assert cost == 0
    assert converged


def test_chunk_length_bounds_distance_block():
    assert chunk_length(16384, 4) == 16384
    assert chunk_length(16384, 256) * 256 <= DISTANCE_BLOCK_ELEMENTS
    assert chunk_length(16384, DISTANCE_BLOCK_ELEMENTS * 2) == 1


def test_large_k_memory_stays_bounded():
    pixels = np.random.default_rng(11).integers(0, 256, size=(16384, 3), dtype=np.uint8)

    tracemalloc.start()
    try:
        result = cluster(pixels, 256, max_iterations=1, config=ClusterConfig(workers=4))
        _, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()

    assert result.centroids.shape == (256, 3)
    # four workers, each holding one (chunk, k) int64 distance block
    assert peak < 64 * 1024 * 1024
