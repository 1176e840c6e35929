# color_reduction.py

import logging
import os
from dataclasses import dataclass
from typing import List

import numpy as np

from cluster_engine import ClusterResult, cluster
from color_vector import as_color_vectors, to_color_tuple
from config import DEFAULT_MAX_ITERATIONS, ClusterConfig
from errors import DimensionMismatch, EncodeError
import image_adapter
from palette import create_color_palette


@dataclass(frozen=True)
class CompressionReport:
    pixels: np.ndarray  # recolored (N, C) uint8 pixels
    width: int
    height: int
    channel_count: int
    result: ClusterResult
    color_percentages: List[dict]


def _check_dimensions(pixels, width, height):
    if width < 0 or height < 0:
        raise DimensionMismatch(f"Image dimensions must not be negative, got {width}x{height}")
    if len(pixels) != width * height:
        raise DimensionMismatch(
            f"Size mismatch: got {len(pixels)} pixels, "
            f"but a {width}x{height} image has {width * height}.")


def reduce_colors_kmeans(pixels, width, height, color_count,
                         max_iterations=DEFAULT_MAX_ITERATIONS, config=None):
    """
    Reduces the number of colors in the image using KMeans clustering.

    Returns:
        (recolored pixels, ClusterResult). The recolored array has the same
        shape and raster order as the input.
    """
    pixels = as_color_vectors(pixels)
    _check_dimensions(pixels, width, height)
    result = cluster(pixels, color_count, max_iterations=max_iterations, config=config)
    # Map each pixel to its cluster center
    return result.centroids[result.assignments], result


def compress(input_pixels, width, height, k, config=None):
    """Replaces every pixel with the color of its cluster centroid."""
    output_pixels, _ = reduce_colors_kmeans(input_pixels, width, height, k, config=config)
    return output_pixels


def color_percentages(result):
    """
    Share of the image covered by each centroid color.

    Returns:
        One dict per centroid with 'color_label', 'color_rgb', 'count' and
        'percentage' keys, in centroid order.
    """
    counts = result.counts
    total_pixels = int(counts.sum())
    percentages = []
    for label, (center, count) in enumerate(zip(result.centroids, counts)):
        percentages.append({
            'color_label': label,
            'color_rgb': to_color_tuple(center),
            'count': int(count),
            'percentage': float(count) / total_pixels * 100,
        })
    return percentages


def compress_file(input_path, output_path, k, max_iterations=DEFAULT_MAX_ITERATIONS,
                  config=None, palette_path=None):
    """
    Decodes an image, reduces it to k colors and writes the result.

    Nothing is written unless clustering and recoloring succeed.

    Args:
        input_path: Image to read.
        output_path: Where to write the reduced image.
        k: Palette size.
        max_iterations: Iteration cap for K-Means.
        config: ClusterConfig, defaults used when None.
        palette_path: Optional PNG path for a palette swatch; a CSV with the
            same stem is written next to it.

    Returns:
        CompressionReport
    """
    config = config or ClusterConfig()
    decoded = image_adapter.decode(input_path)

    output_pixels, result = reduce_colors_kmeans(
        decoded.pixels, decoded.width, decoded.height, k,
        max_iterations=max_iterations, config=config)
    percentages = color_percentages(result)

    for cp in percentages:
        logging.info(f"Label {cp['color_label']}: {cp['color_rgb']} - {cp['percentage']:.2f}%")

    image_adapter.encode(output_path, output_pixels, decoded.width, decoded.height, decoded.channel_count)

    if palette_path is not None:
        try:
            create_color_palette(percentages, palette_path)
        except EncodeError:
            os.remove(output_path)
            raise

    return CompressionReport(
        pixels=output_pixels,
        width=decoded.width,
        height=decoded.height,
        channel_count=decoded.channel_count,
        result=result,
        color_percentages=percentages,
    )
