import numpy as np
import pytest
from skimage import io


BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


@pytest.fixture
def two_tone_pixels():
    """2x2 image: two black pixels followed by two white ones."""
    return np.array([BLACK, BLACK, WHITE, WHITE], dtype=np.uint8)


@pytest.fixture
def noisy_pixels():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(300, 3), dtype=np.uint8)


@pytest.fixture
def write_image(tmp_path):
    """Writes an (H, W[, C]) uint8 array to tmp_path and returns the path."""
    def _write(array, name='input.png'):
        path = tmp_path / name
        io.imsave(str(path), np.asarray(array, dtype=np.uint8), check_contrast=False)
        return path
    return _write
