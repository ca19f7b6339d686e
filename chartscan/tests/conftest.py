from __future__ import annotations

import numpy as np
import pytest

from chartscan.pixel_buffer import PixelBuffer

GREEN = (0, 200, 0)
RED = (200, 0, 0)
GRID_GRAY = (90, 90, 90)


def render_chart(width: int = 480, height: int = 120, *, with_grid: bool = True, candles: int = 7) -> np.ndarray:
    """Dark chart: gray grid on the scanned rows/columns plus spaced candles.

    Candles are 8x20 bodies at x = 30 + 60k, alternating green and red.
    """
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    if with_grid:
        for y in range(int(height * 0.1), int(height * 0.9), max(1, int(height * 0.05))):
            canvas[y, :, :] = GRID_GRAY
        for x in range(int(width * 0.1), int(width * 0.9), max(1, int(width * 0.05))):
            canvas[:, x, :] = GRID_GRAY
    for k in range(candles):
        x = 30 + 60 * k
        canvas[50:70, x : x + 8, :] = GREEN if k % 2 == 0 else RED
    return canvas


@pytest.fixture
def chart_factory():
    return render_chart


@pytest.fixture
def chart_buffer() -> PixelBuffer:
    return PixelBuffer.from_array(render_chart())


@pytest.fixture
def gray_buffer() -> PixelBuffer:
    return PixelBuffer.from_array(np.full((64, 64, 3), 128, dtype=np.uint8))
