from __future__ import annotations

import threading

import pytest

from chartscan.change_detection import (
    AnalysisSnapshot,
    ChangeDetectionOptions,
    SmartChangeDetector,
    change_strength,
    drop_session_detector,
    get_session_detector,
)


def _snap(signal: str, confidence: float = 0.7, confluence: float = 50.0, **extra) -> AnalysisSnapshot:
    return AnalysisSnapshot(signal=signal, confidence=confidence, confluence=confluence, **extra)


def test_first_snapshot_returns_default() -> None:
    detector = SmartChangeDetector()
    result = detector.detect_smart_changes(_snap("compra"))
    assert result.significant_change is False
    assert result.change_type == "consolidation"
    assert result.change_strength == 0.0
    assert result.confidence == 0.3
    assert result.market_impact == "low"
    assert result.trading_recommendation == "Aguardar mais dados"
    assert result.timeframe == "1m"
    assert result.previous_signal is None


def test_neutral_to_buy_is_breakout() -> None:
    detector = SmartChangeDetector()
    detector.detect_smart_changes(_snap("neutro", confidence=0.4, confluence=30))
    result = detector.detect_smart_changes(_snap("compra", confidence=0.8, confluence=75))
    assert result.change_type == "breakout"
    assert result.change_strength == pytest.approx(0.78)
    assert result.confidence == pytest.approx(1.0)
    assert result.market_impact == "high"
    assert result.significant_change is True
    assert result.previous_signal == "neutro"
    assert result.trading_recommendation == "ENTRADA FORTE - COMPRA com confirmação"


def test_reversal_without_strength_is_cautious() -> None:
    detector = SmartChangeDetector()
    detector.detect_smart_changes(_snap("compra"))
    result = detector.detect_smart_changes(_snap("venda"))
    assert result.change_type == "reversal"
    assert result.change_strength == pytest.approx(0.4)
    assert result.confidence == pytest.approx(0.8)
    assert result.market_impact == "low"
    assert result.significant_change is False
    assert result.trading_recommendation == "Cautela - possível reversão para venda"


def test_momentum_shift() -> None:
    detector = SmartChangeDetector()
    detector.detect_smart_changes(_snap("compra", confidence=0.4))
    result = detector.detect_smart_changes(_snap("compra", confidence=0.9))
    assert result.change_type == "momentum_shift"
    assert result.market_impact == "high"
    assert result.trading_recommendation == "Momentum forte - compra"


def test_continuation_and_consolidation() -> None:
    detector = SmartChangeDetector()
    detector.detect_smart_changes(_snap("venda", confidence=0.7))
    result = detector.detect_smart_changes(_snap("venda", confidence=0.75))
    assert result.change_type == "continuation"
    assert result.trading_recommendation == "Manter direção venda - continuação confirmada"

    flat = SmartChangeDetector()
    flat.detect_smart_changes(_snap("neutro"))
    result = flat.detect_smart_changes(_snap("neutro"))
    assert result.change_type == "consolidation"
    assert result.trading_recommendation == "Monitorar - mercado em consolidação"


def test_noisy_history_lowers_confidence() -> None:
    detector = SmartChangeDetector()
    for signal in ("compra", "venda", "compra", "venda"):
        detector.detect_smart_changes(_snap(signal))
    result = detector.detect_smart_changes(_snap("venda"))
    # (0.5 + 2/3 * 0.15) * 0.7
    assert result.confidence == pytest.approx(0.42)
    assert result.trading_recommendation == "Aguardar confirmação - baixa confiança"


def test_sensitivity_scales_strength() -> None:
    previous = _snap("neutro", confidence=0.4, confluence=30)
    current = _snap("compra", confidence=0.8, confluence=75)
    medium = change_strength(previous, current, ChangeDetectionOptions().multiplier)
    high = change_strength(previous, current, ChangeDetectionOptions(sensitivity="high").multiplier)
    low = change_strength(previous, current, ChangeDetectionOptions(sensitivity="low").multiplier)
    assert medium == pytest.approx(0.78)
    assert high == pytest.approx(0.936)
    assert low == pytest.approx(0.624)


def test_new_patterns_add_strength() -> None:
    previous = _snap("compra", patterns=["Doji"])
    current = _snap("compra", patterns=["Doji", "Martelo", "Engolfo", "Pin Bar", "Harami"])
    assert change_strength(previous, current) == pytest.approx(0.15)


def test_timeframe_context_is_reported() -> None:
    detector = SmartChangeDetector()
    options = ChangeDetectionOptions(timeframe_context="5m")
    assert detector.detect_smart_changes(_snap("compra"), options).timeframe == "5m"


def test_history_is_bounded_fifo() -> None:
    detector = SmartChangeDetector(max_history=10)
    for idx in range(11):
        detector.detect_smart_changes(_snap("compra", timestamp=float(idx + 1)))
    history = detector.history
    assert len(history) == 10
    assert history[0].timestamp == 2.0
    assert history[-1].timestamp == 11.0


def test_clear_resets_to_default() -> None:
    detector = SmartChangeDetector()
    detector.detect_smart_changes(_snap("neutro"))
    detector.detect_smart_changes(_snap("compra"))
    detector.clear_analysis_history()
    assert detector.history == ()
    assert detector.get_history_stats() is None
    result = detector.detect_smart_changes(_snap("venda"))
    assert result.confidence == 0.3
    assert result.trading_recommendation == "Aguardar mais dados"


def test_history_stats() -> None:
    detector = SmartChangeDetector()
    assert detector.get_history_stats() is None
    detector.detect_smart_changes(_snap("compra", confidence=0.6, trend="alta"))
    detector.detect_smart_changes(_snap("venda", confidence=0.8, trend="baixa"))
    stats = detector.get_history_stats()
    assert stats.total_analyses == 2
    assert stats.average_confidence == 70
    assert stats.signal_changes == 1
    assert stats.change_frequency == 1.0
    assert stats.current_trend == "baixa"
    assert len(detector.history) == 2

    untrended = SmartChangeDetector()
    untrended.detect_smart_changes(_snap("compra"))
    assert untrended.get_history_stats().current_trend == "unknown"


def test_average_confidence_rounds_half_up() -> None:
    detector = SmartChangeDetector()
    detector.detect_smart_changes(_snap("compra", confidence=0.25))
    detector.detect_smart_changes(_snap("compra", confidence=0.0))
    assert detector.get_history_stats().average_confidence == 13


def test_concurrent_appends_respect_bound() -> None:
    detector = SmartChangeDetector(max_history=5)

    def worker() -> None:
        for _ in range(50):
            detector.detect_smart_changes(_snap("compra"))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(detector.history) == 5


def test_invalid_history_size() -> None:
    with pytest.raises(ValueError):
        SmartChangeDetector(max_history=0)


def test_snapshot_from_dict() -> None:
    snapshot = AnalysisSnapshot.from_dict(
        {"signal": "compra", "confidence": 0.8, "marketPhase": "tendencia", "priceAction": [{"type": "x"}]}
    )
    assert snapshot.market_phase == "tendencia"
    assert snapshot.price_action == [{"type": "x"}]
    assert snapshot.timestamp > 0
    with pytest.raises(ValueError):
        AnalysisSnapshot.from_dict({"confidence": 0.5})


def test_session_detectors_are_isolated() -> None:
    first = get_session_detector("session-a")
    assert get_session_detector("session-a") is first
    other = get_session_detector("session-b")
    assert other is not first
    first.detect_smart_changes(_snap("compra"))
    assert other.history == ()
    assert drop_session_detector("session-a") is True
    assert drop_session_detector("session-a") is False
    assert get_session_detector("session-a") is not first
    drop_session_detector("session-a")
    drop_session_detector("session-b")
