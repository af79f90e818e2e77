from __future__ import annotations

import numpy as np
import pytest
from PIL import Image


@pytest.fixture
def rgb8() -> np.ndarray:
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, size=(24, 32, 3), dtype=np.uint8)


@pytest.fixture
def photo(rgb8: np.ndarray) -> Image.Image:
    return Image.fromarray(rgb8, mode="RGB").convert("RGBA")


def solid(size: tuple[int, int], color: tuple[int, ...]) -> Image.Image:
    mode = "RGBA" if len(color) == 4 else "RGB"
    return Image.new(mode, size, color)
