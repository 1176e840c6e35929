# image_adapter.py

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image
from skimage import io
from skimage.util import img_as_ubyte

from errors import DecodeError, EncodeError

SUPPORTED_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.bmp', '.tif', '.tiff'}
JPEG_EXTENSIONS = {'.jpg', '.jpeg'}

# Exceptions the imaging libraries raise for unreadable or unwritable data
_IMAGING_ERRORS = (OSError, ValueError, RuntimeError, SyntaxError)


@dataclass(frozen=True)
class DecodedImage:
    pixels: np.ndarray  # (width * height, channel_count) uint8, raster order
    width: int
    height: int
    channel_count: int


def decode(path):
    """
    Reads an image file into a flat sequence of color vectors.

    Args:
        path: Path to a single-frame image.

    Returns:
        DecodedImage with pixels of shape (height * width, channel_count).
    """
    path = Path(path)
    if not path.is_file():
        raise DecodeError(f"Image not found or unreadable: {path}")

    try:
        with Image.open(path) as opened:
            frame_count = getattr(opened, 'n_frames', 1)
    except _IMAGING_ERRORS as err:
        raise DecodeError(f"Could not decode {path}: {err}") from err
    if frame_count > 1:
        raise DecodeError(f"{path} has {frame_count} frames; multi-frame images are not supported")

    try:
        image = np.asarray(io.imread(str(path)))
    except _IMAGING_ERRORS as err:
        raise DecodeError(f"Could not decode {path}: {err}") from err

    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    if image.ndim != 3:
        raise DecodeError(f"Unsupported image layout {image.shape} in {path} (multi-frame images are not supported)")
    height, width, channel_count = image.shape
    if not 1 <= channel_count <= 4:
        raise DecodeError(f"Unsupported channel count {channel_count} in {path}")
    if width == 0 or height == 0:
        raise DecodeError(f"Image {path} has no pixels")

    # Ensure the image is in uint8 format for exact color matching
    if image.dtype != np.uint8:
        try:
            image = img_as_ubyte(image)
        except ValueError as err:
            raise DecodeError(f"Could not convert {path} to 8-bit channels: {err}") from err

    logging.info(f"Decoded {path}: {width}x{height}, {channel_count} channel(s)")
    return DecodedImage(
        pixels=image.reshape(-1, channel_count),
        width=width,
        height=height,
        channel_count=channel_count,
    )


def encode(path, pixels, width, height, channel_count):
    """
    Writes a flat sequence of color vectors as an image file.

    The file is written to a temporary name in the target directory first and
    renamed into place, so a failure never leaves a partial output behind.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise EncodeError(
            f"Unsupported output format {suffix or '(none)'!r} for {path}; "
            f"use one of {', '.join(sorted(SUPPORTED_EXTENSIONS))}")
    if suffix in JPEG_EXTENSIONS and channel_count in (2, 4):
        raise EncodeError(f"JPEG cannot store an alpha channel: {path}")

    pixels = np.asarray(pixels, dtype=np.uint8)
    if pixels.shape != (width * height, channel_count):
        raise EncodeError(
            f"Pixel data of shape {pixels.shape} does not describe a "
            f"{width}x{height} image with {channel_count} channel(s)")
    image = pixels.reshape(height, width, channel_count)
    if channel_count == 1:
        image = image[:, :, 0]

    if not path.parent.is_dir():
        raise EncodeError(f"Output directory does not exist: {path.parent}")

    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(suffix=suffix, prefix='.partial-', dir=path.parent)
        os.close(fd)
        io.imsave(tmp_path, image, check_contrast=False)
        os.replace(tmp_path, path)
        tmp_path = None
    except _IMAGING_ERRORS as err:
        raise EncodeError(f"Could not write {path}: {err}") from err
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)

    logging.info(f"Saved {width}x{height} image to {path}")
