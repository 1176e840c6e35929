# color_vector.py

import numpy as np

from errors import EmptyInput, InvalidParameter

MAX_CHANNEL_VALUE = 255
MAX_CHANNELS = 4  # gray, gray+alpha, RGB, RGBA


def as_color_vectors(pixels, channel_count=None):
    """
    Validates pixel data and returns it as a read-only (N, C) uint8 array.

    A 1-D input is treated as single-channel (grayscale) pixels. The returned
    array never aliases a writable buffer, so nothing downstream can modify
    the caller's pixels through it.

    Args:
        pixels: Array-like of shape (N, C) or (N,) with integer values in 0..255.
        channel_count: Expected C, or None to accept whatever the data has.

    Returns:
        np.ndarray of shape (N, C), dtype uint8, not writeable.
    """
    array = np.asarray(pixels)
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    if array.ndim != 2:
        raise InvalidParameter(f"Pixels must be a 2-D (N, C) array, got shape {array.shape}")

    channels = array.shape[1]
    if not 1 <= channels <= MAX_CHANNELS:
        raise InvalidParameter(f"Pixels must have 1 to {MAX_CHANNELS} channels, got {channels}")
    if channel_count is not None and channels != channel_count:
        raise InvalidParameter(f"Expected {channel_count} channels per pixel, got {channels}")

    if array.dtype != np.uint8:
        if array.size and not np.issubdtype(array.dtype, np.integer):
            if not np.all(np.equal(np.mod(array, 1), 0)):
                raise InvalidParameter("Pixel channel values must be integers")
        if array.size and (array.min() < 0 or array.max() > MAX_CHANNEL_VALUE):
            raise InvalidParameter(f"Pixel channel values must be within 0..{MAX_CHANNEL_VALUE}")
        array = array.astype(np.uint8)

    view = array.view()
    view.flags.writeable = False
    return view


def squared_distance(a, b):
    """Squared Euclidean distance between two color vectors of equal dimension."""
    a = np.asarray(a, dtype=np.int64)
    b = np.asarray(b, dtype=np.int64)
    if a.shape != b.shape:
        raise InvalidParameter(f"Color vectors differ in dimension: {a.shape} vs {b.shape}")
    diff = a - b
    return int(np.sum(diff * diff))


def rounded_mean(sums, counts):
    """
    Per-channel mean from accumulated sums, rounded half-up to integers.

    Uses exact integer arithmetic, so the same sums always give the same
    colors. Rows with a zero count come back as zeros; callers decide what an
    empty cluster means.

    Args:
        sums: (K, C) integer array of channel sums.
        counts: (K,) integer array of member counts.

    Returns:
        (K, C) int64 array.
    """
    sums = np.asarray(sums, dtype=np.int64)
    counts = np.asarray(counts, dtype=np.int64).reshape(-1, 1)
    safe_counts = np.where(counts > 0, counts, 1)
    means = (2 * sums + safe_counts) // (2 * safe_counts)
    return np.where(counts > 0, means, 0)


def mean_color(vectors):
    """Rounded per-channel mean of a non-empty set of color vectors."""
    vectors = np.asarray(vectors, dtype=np.int64)
    if vectors.ndim == 1:
        vectors = vectors.reshape(-1, 1)
    if vectors.shape[0] == 0:
        raise EmptyInput("Cannot take the mean of an empty set of colors")
    sums = vectors.sum(axis=0, keepdims=True)
    return rounded_mean(sums, [vectors.shape[0]])[0].astype(np.uint8)


def pairwise_squared_distances(pixels, centroids):
    """
    Squared distances between every pixel and every centroid.

    Uses |x|^2 - 2 x.c + |c|^2 in int64, so the only large temporary is the
    (N, K) result itself.

    Args:
        pixels: (N, C) array.
        centroids: (K, C) array.

    Returns:
        (N, K) int64 array.
    """
    pixels = np.asarray(pixels, dtype=np.int64)
    centroids = np.asarray(centroids, dtype=np.int64)
    distances = pixels @ (-2 * centroids.T)
    distances += np.einsum('nc,nc->n', pixels, pixels)[:, None]
    distances += np.einsum('kc,kc->k', centroids, centroids)[None, :]
    return distances


def to_color_tuple(vector):
    return tuple(int(c) for c in vector)
