from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from .pixel_buffer import PixelBuffer
from .pixel_scanner import candle_color_masks

LOGGER = logging.getLogger(__name__)

SCAN_STRIDE = 3
CANDLE_DOMINANCE = 1.3
CANDLE_MIN_CHANNEL = 80
MIN_COLOR_RATIO = 0.3
MIN_UNIFORMITY_RATIO = 0.5
MIN_COLORED_PIXELS = 5
UNIFORMITY_DISTANCE = 50
# Colored-passing windows per start position that get the uniformity test.
MAX_UNIFORMITY_CHECKS = 32
DETECTED_MIN_COUNT = 5
QUALITY_HIGH_COUNT = 20
QUALITY_MEDIUM_COUNT = 10


@dataclass(slots=True)
class CandleRegion:
    x: int
    y: int
    width: int
    height: int
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height, "color": self.color}


@dataclass(slots=True)
class CandleDetection:
    detected: bool
    count: int
    quality: str
    regions: List[CandleRegion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "count": self.count,
            "quality": self.quality,
            "regions": [region.to_dict() for region in self.regions],
        }


@dataclass(slots=True)
class CandleBounds:
    min_width: int
    max_width: int
    min_height: int
    max_height: float

    @classmethod
    def for_size(cls, width: int, height: int) -> "CandleBounds":
        return cls(
            min_width=max(2, int(width * 0.005)),
            max_width=max(20, int(width * 0.02)),
            min_height=max(10, int(height * 0.02)),
            max_height=height * 0.2,
        )


def candle_quality(count: int) -> str:
    if count > QUALITY_HIGH_COUNT:
        return "alta"
    if count > QUALITY_MEDIUM_COUNT:
        return "media"
    return "baixa"


def detect_candles(buffer: PixelBuffer) -> CandleDetection:
    bounds = CandleBounds.for_size(buffer.width, buffer.height)
    LOGGER.debug(
        "Candle search %s-%spx wide, min %spx tall",
        bounds.min_width,
        bounds.max_width,
        bounds.min_height,
    )
    candidates = _scan_candidates(buffer, bounds)
    regions = filter_overlapping_candles(candidates)
    count = len(regions)
    return CandleDetection(
        detected=count > DETECTED_MIN_COUNT,
        count=count,
        quality=candle_quality(count),
        regions=regions,
    )


def _integral(mask: np.ndarray) -> np.ndarray:
    table = np.zeros((mask.shape[0] + 1, mask.shape[1] + 1), dtype=np.int64)
    table[1:, 1:] = mask.astype(np.int64).cumsum(axis=0).cumsum(axis=1)
    return table


def _window_sum(table: np.ndarray, x: int, y: int, w, h):
    return table[y + h, x + w] - table[y, x + w] - table[y + h, x] + table[y, x]


def _scan_candidates(buffer: PixelBuffer, bounds: CandleBounds) -> List[CandleRegion]:
    width, height = buffer.width, buffer.height
    rgb = buffer.rgb()
    green, red = candle_color_masks(rgb, dominance=CANDLE_DOMINANCE, min_channel=CANDLE_MIN_CHANNEL)
    green_table = _integral(green)
    red_table = _integral(red)
    colored_table = green_table + red_table
    height_cap = int(bounds.max_height)
    if colored_table[-1, -1] <= MIN_COLORED_PIXELS or height_cap < bounds.min_height:
        return []

    xs = np.arange(0, width - bounds.max_width, SCAN_STRIDE)
    ys = np.arange(0, height - bounds.min_height, SCAN_STRIDE)
    if xs.size == 0 or ys.size == 0:
        return []
    # Windows must stay strictly inside the buffer.
    top_heights = np.minimum(height - 1 - ys, height_cap)
    reachable = _window_sum(colored_table, xs[:, None], ys[None, :], bounds.max_width, top_heights[None, :])
    min_area = bounds.min_width * bounds.min_height
    viable = (reachable > MIN_COLORED_PIXELS) & (reachable > MIN_COLOR_RATIO * min_area)

    widths = np.arange(bounds.min_width, bounds.max_width + 1)
    candidates: List[CandleRegion] = []
    # argwhere walks x first, then y, like the scan itself.
    for x_idx, y_idx in np.argwhere(viable):
        x = int(xs[x_idx])
        y = int(ys[y_idx])
        region = _first_candle_at(
            rgb, green_table, red_table, colored_table, x, y, widths, bounds.min_height, int(top_heights[y_idx])
        )
        if region is not None:
            candidates.append(region)
    return candidates


def _first_candle_at(
    rgb: np.ndarray,
    green_table: np.ndarray,
    red_table: np.ndarray,
    colored_table: np.ndarray,
    x: int,
    y: int,
    widths: np.ndarray,
    min_height: int,
    top_height: int,
) -> Optional[CandleRegion]:
    heights = np.arange(min_height, top_height + 1)
    w_grid = widths[:, None]
    h_grid = heights[None, :]
    colored = _window_sum(colored_table, x, y, w_grid, h_grid)
    areas = w_grid * h_grid
    passing = (colored > MIN_COLOR_RATIO * areas) & (colored > MIN_COLORED_PIXELS)
    # Row-major order keeps the width-then-height search order.
    order = np.argwhere(passing)[:MAX_UNIFORMITY_CHECKS]
    if order.size == 0:
        return None
    w_batch = widths[order[:, 0]]
    h_batch = heights[order[:, 1]]
    patch = rgb[y : y + int(h_batch.max()), x : x + int(w_batch.max())]
    centers = patch[h_batch // 2, w_batch // 2]
    close = np.abs(patch[None, :, :, :] - centers[:, None, None, :]).sum(axis=3) < UNIFORMITY_DISTANCE
    # One summed-area table per center; each window reads its own corner.
    matched = close.cumsum(axis=1).cumsum(axis=2)[np.arange(order.shape[0]), h_batch - 1, w_batch - 1]
    hits = np.flatnonzero(matched > MIN_UNIFORMITY_RATIO * w_batch * h_batch)
    if hits.size == 0:
        return None
    w = int(w_batch[hits[0]])
    h = int(h_batch[hits[0]])
    greens = int(_window_sum(green_table, x, y, w, h))
    reds = int(_window_sum(red_table, x, y, w, h))
    return CandleRegion(x=x, y=y, width=w, height=h, color="green" if greens > reds else "red")


def filter_overlapping_candles(candles: List[CandleRegion]) -> List[CandleRegion]:
    """Greedy suppression in scan order; the first region found keeps its slot."""
    filtered: List[CandleRegion] = []
    for candle in candles:
        overlapping = False
        for existing in filtered:
            if abs(candle.x - existing.x) < max(candle.width, existing.width) and abs(
                candle.y - existing.y
            ) < max(candle.height, existing.height):
                overlapping = True
                break
        if not overlapping:
            filtered.append(candle)
    return filtered


__all__ = [
    "CandleRegion",
    "CandleDetection",
    "CandleBounds",
    "candle_quality",
    "detect_candles",
    "filter_overlapping_candles",
]
