# main.py
# Reduces an image to k colors with K-Means and writes the result.
import argparse
import logging
import sys

from color_reduction import compress_file
from config import (DEFAULT_K, DEFAULT_MAX_ITERATIONS, DEFAULT_SEED, EMPTY_CLUSTER_POLICIES,
                    INIT_POLICIES, ClusterConfig)
from errors import CompressionError


def positive_int(value):
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number < 1:
        raise argparse.ArgumentTypeError(f"{value!r} must be a positive integer")
    return number


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description='K-Means image palette reducer')

    parser.add_argument('-i', '--input', required=True,
                        help='Path to the input image')

    parser.add_argument('-o', '--output', required=True,
                        help='Path of the reduced image (png, jpg, bmp or tif)')

    parser.add_argument('-k', '--k', type=positive_int, default=DEFAULT_K,
                        help=f'Number of colors to reduce the image to (default: {DEFAULT_K})')

    parser.add_argument('--max-iterations', type=positive_int, default=DEFAULT_MAX_ITERATIONS,
                        help=f'Upper bound on K-Means iterations (default: {DEFAULT_MAX_ITERATIONS})')

    parser.add_argument('--init', choices=INIT_POLICIES, default='random',
                        help='How the initial centroids are picked (default: random)')

    parser.add_argument('--seed', type=int, default=DEFAULT_SEED,
                        help=f'Seed for random and kmeans++ initialization (default: {DEFAULT_SEED})')

    parser.add_argument('--empty-policy', choices=EMPTY_CLUSTER_POLICIES, default='farthest',
                        help='farthest: move the farthest pixel into an empty cluster; '
                             'retain: keep its previous centroid (default: farthest)')

    parser.add_argument('--no-duplicate-seeds', action='store_true',
                        help='Fail instead of repeating seed colors when k exceeds the distinct colors')

    parser.add_argument('--workers', type=positive_int, default=None,
                        help='Worker threads for the clustering steps (default: CPU count + 4, max 32)')

    parser.add_argument('--palette', default=None,
                        help='Also write a palette swatch PNG here (a CSV is written next to it)')

    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Log every K-Means iteration')

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s: %(message)s')

    try:
        config = ClusterConfig(
            init=args.init,
            seed=args.seed,
            empty_policy=args.empty_policy,
            allow_duplicate_seeds=not args.no_duplicate_seeds,
            workers=args.workers,
        )
        report = compress_file(args.input, args.output, args.k,
                               max_iterations=args.max_iterations,
                               config=config, palette_path=args.palette)
    except CompressionError as err:
        logging.debug("Compression failed", exc_info=True)
        print(f"error: {err}", file=sys.stderr)
        return 1

    result = report.result
    state = 'converged' if result.converged else 'stopped at the iteration cap'
    logging.info(f"Processing complete ({state} after {result.iterations} iterations). "
                 f"Reduced image saved to '{args.output}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
