from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .candle_detector import CandleDetection, detect_candles
from .pixel_buffer import PixelBuffer, buffer_from_data_url
from .pixel_scanner import (
    AxisDetection,
    ColorAnalysis,
    GridDetection,
    analyze_colors,
    classify_background,
    detect_grid,
    detect_price_axis,
    detect_time_axis,
)

LOGGER = logging.getLogger(__name__)

VALID_CHART_MIN_CONFIDENCE = 60
EXCELLENT_CONFIDENCE = 80

_DECODE_FAILURES: Dict[str, str] = {
    "invalid_image": "Falha ao acessar os pixels da imagem",
    "image_too_large": "Imagem muito grande para análise de pixels",
}


@dataclass(slots=True)
class ChartPixelAnalysis:
    has_valid_chart: bool
    chart_quality: str
    confidence: int
    candle_detection: CandleDetection
    grid_detection: GridDetection
    price_axis_detection: AxisDetection
    time_axis_detection: AxisDetection
    color_analysis: ColorAnalysis
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasValidChart": self.has_valid_chart,
            "chartQuality": self.chart_quality,
            "confidence": self.confidence,
            "candleDetection": self.candle_detection.to_dict(),
            "gridDetection": self.grid_detection.to_dict(),
            "priceAxisDetection": self.price_axis_detection.to_dict(),
            "timeAxisDetection": self.time_axis_detection.to_dict(),
            "colorAnalysis": self.color_analysis.to_dict(),
            "recommendations": list(self.recommendations),
        }


def chart_confidence(
    candles: CandleDetection,
    grid: GridDetection,
    price_axis: AxisDetection,
    time_axis: AxisDetection,
    colors: ColorAnalysis,
) -> int:
    score = 0
    if candles.detected:
        score += 30
        if candles.quality == "alta":
            score += 10
        elif candles.quality == "media":
            score += 5
    if grid.detected:
        score += 20
        if grid.horizontal_lines >= 5:
            score += 3
        if grid.vertical_lines >= 5:
            score += 2
    if price_axis.detected:
        score += 10
    if time_axis.detected:
        score += 10
    if colors.has_green_candles and colors.has_red_candles:
        score += 15
    elif colors.has_green_candles or colors.has_red_candles:
        score += 8
    return min(100, score)


def quality_label(confidence: int, candles: CandleDetection, grid: GridDetection) -> str:
    if confidence >= 85 and candles.quality == "alta" and grid.detected:
        return "excelente"
    if confidence >= 70 and candles.detected and grid.detected:
        return "boa"
    if confidence >= 50 and candles.detected:
        return "regular"
    if confidence >= 30:
        return "ruim"
    return "nao_detectado"


def build_recommendations(
    has_valid_chart: bool,
    confidence: int,
    candles: CandleDetection,
    grid: GridDetection,
    colors: ColorAnalysis,
) -> List[str]:
    recommendations: List[str] = []
    if not has_valid_chart:
        recommendations.append("❌ Gráfico não detectado com qualidade suficiente")
    if confidence < VALID_CHART_MIN_CONFIDENCE:
        recommendations.append("⚠️ Baixa confiança na detecção do gráfico")
    if not candles.detected:
        recommendations.append("🕯️ Candles não detectados - verifique se o gráfico está visível")
    elif candles.quality == "baixa":
        recommendations.append("📊 Qualidade dos candles baixa - melhore o enquadramento")
    if not grid.detected:
        recommendations.append("📋 Grid não detectado - ative as linhas de grade no gráfico")
    if not colors.has_green_candles or not colors.has_red_candles:
        recommendations.append("🎨 Cores de candles não detectadas claramente")
    if has_valid_chart and confidence > EXCELLENT_CONFIDENCE:
        recommendations.append("✅ Gráfico detectado com excelente qualidade")
    return recommendations


def analyze_chart_pixels(buffer: PixelBuffer) -> ChartPixelAnalysis:
    """Run the full pixel pipeline over one RGBA buffer.

    Background first, since the grid band depends on it;
    then candles, grid, both axes and candle colors feed the score.
    """
    background = classify_background(buffer)
    LOGGER.debug(
        "Background %s (dark=%.3f light=%.3f)",
        background.background_type,
        background.dark_ratio,
        background.light_ratio,
    )
    candles = detect_candles(buffer)
    LOGGER.debug("Candles: count=%s quality=%s", candles.count, candles.quality)
    grid = detect_grid(buffer, background.background_type)
    LOGGER.debug("Grid: h=%s v=%s", grid.horizontal_lines, grid.vertical_lines)
    lum = buffer.luminance()
    price_axis = detect_price_axis(buffer, lum)
    time_axis = detect_time_axis(buffer, lum)
    colors = analyze_colors(buffer)

    confidence = chart_confidence(candles, grid, price_axis, time_axis, colors)
    label = quality_label(confidence, candles, grid)
    has_valid_chart = confidence > VALID_CHART_MIN_CONFIDENCE and candles.detected and grid.detected
    recommendations = build_recommendations(has_valid_chart, confidence, candles, grid, colors)
    LOGGER.info(
        "Chart analysis %sx%s: valid=%s quality=%s confidence=%s",
        buffer.width,
        buffer.height,
        has_valid_chart,
        label,
        confidence,
    )
    return ChartPixelAnalysis(
        has_valid_chart=has_valid_chart,
        chart_quality=label,
        confidence=confidence,
        candle_detection=candles,
        grid_detection=grid,
        price_axis_detection=price_axis,
        time_axis_detection=time_axis,
        color_analysis=colors,
        recommendations=recommendations,
    )


def unavailable_analysis(reason: str) -> ChartPixelAnalysis:
    """Zeroed analysis returned when no pixels could be read."""
    return ChartPixelAnalysis(
        has_valid_chart=False,
        chart_quality="nao_detectado",
        confidence=0,
        candle_detection=CandleDetection(detected=False, count=0, quality="baixa"),
        grid_detection=GridDetection(detected=False, horizontal_lines=0, vertical_lines=0),
        price_axis_detection=AxisDetection(detected=False, position="none"),
        time_axis_detection=AxisDetection(detected=False, position="none"),
        color_analysis=ColorAnalysis(has_green_candles=False, has_red_candles=False, background_type="mixed"),
        recommendations=[reason],
    )


def analyze_chart_image(data_url: str) -> ChartPixelAnalysis:
    buffer, diagnostics, error = buffer_from_data_url(data_url)
    if buffer is None:
        LOGGER.warning("Chart image unavailable: %s %s", error, diagnostics)
        return unavailable_analysis(_DECODE_FAILURES.get(error or "", _DECODE_FAILURES["invalid_image"]))
    return analyze_chart_pixels(buffer)


__all__ = [
    "ChartPixelAnalysis",
    "chart_confidence",
    "quality_label",
    "build_recommendations",
    "analyze_chart_pixels",
    "unavailable_analysis",
    "analyze_chart_image",
]
