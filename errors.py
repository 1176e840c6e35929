# errors.py


class CompressionError(Exception):
    """Base class for every failure raised while compressing an image."""


class InvalidParameter(CompressionError, ValueError):
    """Bad k, iteration count or configuration value."""


class EmptyInput(CompressionError, ValueError):
    """No pixels to cluster."""


class DimensionMismatch(CompressionError, ValueError):
    """Pixel count does not match width x height."""


class DecodeError(CompressionError, OSError):
    """Input image could not be read."""


class EncodeError(CompressionError, OSError):
    """Output image could not be written."""
