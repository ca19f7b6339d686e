from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .pixel_buffer import PixelBuffer

BACKGROUND_STRIDE = 5
DARK_LUMINANCE = 80
LIGHT_LUMINANCE = 200
BACKGROUND_RATIO = 0.6

GRID_SAMPLE_STRIDE = 3
GRID_LINE_COVERAGE = 0.4
GRID_MIN_LINES = 3
# Exclusive luminance band that grid lines fall into, per background.
GRID_BANDS: Dict[str, Tuple[float, float]] = {
    "dark": (60.0, 120.0),
    "light": (100.0, 180.0),
}

AXIS_MARGIN = 0.05
AXIS_SAMPLE_STRIDE = 5
AXIS_TEXT_LUMINANCE = 100
AXIS_TEXT_RATIO = 0.1

COLOR_PIXEL_STRIDE = 4
COLOR_DOMINANCE = 1.4
COLOR_MIN_CHANNEL = 100
COLOR_MIN_SHARE = 0.001


@dataclass(slots=True)
class BackgroundAnalysis:
    background_type: str
    dark_ratio: float
    light_ratio: float


@dataclass(slots=True)
class GridDetection:
    detected: bool
    horizontal_lines: int
    vertical_lines: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "horizontalLines": self.horizontal_lines,
            "verticalLines": self.vertical_lines,
        }


@dataclass(slots=True)
class AxisDetection:
    detected: bool
    position: str

    def to_dict(self) -> Dict[str, Any]:
        return {"detected": self.detected, "position": self.position}


@dataclass(slots=True)
class ColorAnalysis:
    has_green_candles: bool
    has_red_candles: bool
    background_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasGreenCandles": self.has_green_candles,
            "hasRedCandles": self.has_red_candles,
            "backgroundType": self.background_type,
        }


def classify_background(buffer: PixelBuffer) -> BackgroundAnalysis:
    samples = buffer.luminance()[::BACKGROUND_STRIDE, ::BACKGROUND_STRIDE]
    total = max(1, samples.size)
    dark_ratio = float((samples < DARK_LUMINANCE).sum()) / total
    light_ratio = float((samples > LIGHT_LUMINANCE).sum()) / total
    background_type = "mixed"
    if dark_ratio > BACKGROUND_RATIO:
        background_type = "dark"
    elif light_ratio > BACKGROUND_RATIO:
        background_type = "light"
    return BackgroundAnalysis(background_type=background_type, dark_ratio=dark_ratio, light_ratio=light_ratio)


def _scan_positions(length: int) -> np.ndarray:
    start = int(length * 0.1)
    step = max(1, int(length * 0.05))
    return np.arange(start, length * 0.9, step).astype(int)


def _line_matches(samples: np.ndarray, band: Tuple[float, float]) -> bool:
    if samples.size == 0:
        return False
    low, high = band
    matched = int(((samples > low) & (samples < high)).sum())
    return matched / samples.size >= GRID_LINE_COVERAGE


def detect_grid(buffer: PixelBuffer, background_type: str) -> GridDetection:
    band = GRID_BANDS.get(background_type)
    if band is None:
        return GridDetection(detected=False, horizontal_lines=0, vertical_lines=0)
    lum = buffer.luminance()
    horizontal = sum(
        1 for y in _scan_positions(buffer.height) if _line_matches(lum[y, ::GRID_SAMPLE_STRIDE], band)
    )
    vertical = sum(
        1 for x in _scan_positions(buffer.width) if _line_matches(lum[::GRID_SAMPLE_STRIDE, x], band)
    )
    return GridDetection(
        detected=horizontal >= GRID_MIN_LINES and vertical >= GRID_MIN_LINES,
        horizontal_lines=horizontal,
        vertical_lines=vertical,
    )


def _margin_has_text(margin: np.ndarray) -> bool:
    if margin.size == 0:
        return False
    dark = int((margin < AXIS_TEXT_LUMINANCE).sum())
    return dark > margin.size * AXIS_TEXT_RATIO


def _axis_position(first: bool, second: bool, names: Tuple[str, str]) -> str:
    if first and second:
        return "both"
    if first:
        return names[0]
    if second:
        return names[1]
    return "none"


def detect_price_axis(buffer: PixelBuffer, lum: Optional[np.ndarray] = None) -> AxisDetection:
    lum = buffer.luminance() if lum is None else lum
    margin = int(buffer.width * AXIS_MARGIN)
    left = _margin_has_text(lum[::AXIS_SAMPLE_STRIDE, :margin])
    right_start = int(buffer.width * (1.0 - AXIS_MARGIN))
    right = _margin_has_text(lum[::AXIS_SAMPLE_STRIDE, right_start:])
    return AxisDetection(detected=left or right, position=_axis_position(left, right, ("left", "right")))


def detect_time_axis(buffer: PixelBuffer, lum: Optional[np.ndarray] = None) -> AxisDetection:
    lum = buffer.luminance() if lum is None else lum
    margin = int(buffer.height * AXIS_MARGIN)
    top = _margin_has_text(lum[:margin, ::AXIS_SAMPLE_STRIDE])
    bottom_start = int(buffer.height * (1.0 - AXIS_MARGIN))
    bottom = _margin_has_text(lum[bottom_start:, ::AXIS_SAMPLE_STRIDE])
    return AxisDetection(detected=top or bottom, position=_axis_position(top, bottom, ("top", "bottom")))


def candle_color_masks(
    rgb: np.ndarray, *, dominance: float, min_channel: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Green/red candle masks; a pixel that qualifies as green is never red."""
    r = rgb[..., 0]
    g = rgb[..., 1]
    b = rgb[..., 2]
    green = (g > r * dominance) & (g > b * dominance) & (g > min_channel)
    red = ~green & (r > g * dominance) & (r > b * dominance) & (r > min_channel)
    return green, red


def analyze_colors(buffer: PixelBuffer) -> ColorAnalysis:
    samples = buffer.rgb().reshape(-1, 3)[::COLOR_PIXEL_STRIDE]
    total = max(1, samples.shape[0])
    green, red = candle_color_masks(samples, dominance=COLOR_DOMINANCE, min_channel=COLOR_MIN_CHANNEL)
    # Plain majority over the same samples, independent of classify_background.
    lum = samples.sum(axis=1) / 3.0
    dark = int((lum < DARK_LUMINANCE).sum())
    light = int((lum > LIGHT_LUMINANCE).sum())
    background_type = "mixed"
    if dark > light:
        background_type = "dark"
    elif light > dark:
        background_type = "light"
    return ColorAnalysis(
        has_green_candles=int(green.sum()) > total * COLOR_MIN_SHARE,
        has_red_candles=int(red.sum()) > total * COLOR_MIN_SHARE,
        background_type=background_type,
    )


__all__ = [
    "BackgroundAnalysis",
    "GridDetection",
    "AxisDetection",
    "ColorAnalysis",
    "classify_background",
    "detect_grid",
    "detect_price_axis",
    "detect_time_axis",
    "analyze_colors",
    "candle_color_masks",
]
