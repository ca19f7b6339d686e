from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from django.test import override_settings

from chartscan.decision_engine import (
    AnalysisResult,
    DecisionCriteria,
    DetectedPattern,
    EntryRecommendation,
    PriceActionSignal,
    TradingDecisionEngine,
    create_decision_engine,
    position_size,
    predominant_direction,
    round_half_up,
    signal_consistency,
    signal_strength,
    urgency_for,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_factory_presets() -> None:
    fast = create_decision_engine()
    assert fast.criteria == DecisionCriteria(
        min_confidence=0.65, required_confluences=6, risk_reward_ratio=2.0, max_risk_percent=0.02, timeframe="1m"
    )
    slow = create_decision_engine("5m")
    assert slow.criteria.min_confidence == 0.70
    assert slow.criteria.required_confluences == 7


def test_pin_bar_buy_scenario() -> None:
    analysis = AnalysisResult(
        patterns=[DetectedPattern(type="Pin Bar", confidence=0.85, action="compra")],
        confluence_score=70,
    )
    decision = create_decision_engine("1m").make_decision(analysis, now=NOW)
    assert decision.action == "BUY"
    assert decision.confidence == pytest.approx(0.71)
    assert decision.urgency == "MEDIUM"
    assert 0.01 <= decision.position_size <= 0.05
    assert decision.position_size == pytest.approx(0.0384)
    assert decision.reasoning[0] == "Sinal BUY com confiança 71%"
    assert decision.reasoning[1] == "1 padrões técnicos confirmam a direção"
    assert decision.reasoning[2] == "Score de confluência: 70%"
    assert decision.signals["confluence"] == ["Confluência 70%"]
    assert decision.signals["technical"] == ["Pin Bar"]


def test_empty_analysis_waits() -> None:
    decision = create_decision_engine().make_decision(AnalysisResult(), now=NOW)
    assert decision.action == "WAIT"
    assert decision.urgency == "LOW"
    assert decision.confidence == pytest.approx(0.05)
    assert decision.reasoning == [
        "Confiança 5% abaixo do mínimo 65%",
        "Confluências insuficientes para confirmar entrada",
    ]
    assert decision.entry_price is None
    assert decision.position_size == pytest.approx(0.012)


def test_confluence_gate_blocks_confident_signal() -> None:
    analysis = AnalysisResult(
        patterns=[
            DetectedPattern(type="Martelo", confidence=0.95, action="compra"),
            DetectedPattern(type="Martelo", confidence=0.95, action="compra"),
        ],
        confluence_score=50,
    )
    decision = create_decision_engine().make_decision(analysis, now=NOW)
    assert decision.confidence >= 0.65
    assert decision.action == "WAIT"
    assert "Confluências insuficientes para confirmar entrada" in decision.reasoning


def test_conflicting_patterns_hold() -> None:
    analysis = AnalysisResult(
        patterns=[
            DetectedPattern(type="Doji", confidence=0.9, action="compra"),
            DetectedPattern(type="Doji", confidence=0.9, action="venda"),
        ],
        confluence_score=100,
    )
    decision = create_decision_engine().make_decision(analysis, now=NOW)
    assert decision.confidence == pytest.approx(0.77)
    assert decision.action == "HOLD"
    assert decision.urgency == "LOW"
    assert decision.reasoning == ["Sinais conflitantes - aguardando confirmação"]


def test_sell_copies_matching_entry() -> None:
    analysis = AnalysisResult(
        patterns=[DetectedPattern(type="Engolfo de Baixa", confidence=0.9, action="venda")],
        price_action_signals=[
            PriceActionSignal(type="Rejeição", direction="baixa", confidence=0.8, strength="forte", risk_reward=3.0)
        ],
        confluence_score=80,
        entry_recommendations=[
            EntryRecommendation(action="compra", entry_price=1.1, stop_loss=1.0, take_profit=1.3, risk_reward=3.0),
            EntryRecommendation(action="venda", entry_price=1.2345, stop_loss=1.25, take_profit=1.2),
        ],
    )
    decision = create_decision_engine().make_decision(analysis, now=NOW)
    assert decision.action == "SELL"
    assert decision.urgency == "HIGH"
    assert decision.entry_price == 1.2345
    assert decision.stop_loss == 1.25
    assert decision.take_profit == 1.2
    assert decision.risk_reward == 2.0
    assert decision.reasoning[-1] == "Entrada: 1.2345 | SL: 1.2500 | TP: 1.2000"
    assert decision.signals["price_action"] == ["Rejeição"]


def test_entry_falls_back_to_first_recommendation() -> None:
    analysis = AnalysisResult(
        patterns=[DetectedPattern(type="Pin Bar", confidence=0.85, action="compra")],
        confluence_score=70,
        entry_recommendations=[EntryRecommendation(action="venda", entry_price=2.0, risk_reward=1.5)],
    )
    decision = create_decision_engine().make_decision(analysis, now=NOW)
    assert decision.action == "BUY"
    assert decision.entry_price == 2.0
    assert decision.risk_reward == 1.5


def test_entries_ignored_when_not_trading() -> None:
    analysis = AnalysisResult(entry_recommendations=[EntryRecommendation(action="compra", entry_price=2.0)])
    decision = create_decision_engine().make_decision(analysis, now=NOW)
    assert decision.action == "WAIT"
    assert decision.entry_price is None
    assert decision.risk_reward is None


def test_validity_window_and_expiry() -> None:
    decision = create_decision_engine().make_decision(AnalysisResult(), now=NOW)
    assert decision.valid_until == NOW + timedelta(minutes=5)
    assert decision.is_expired(NOW) is False
    assert decision.is_expired(NOW + timedelta(minutes=5, seconds=1)) is True


@override_settings(CHARTSCAN_DECISION_VALIDITY_SECONDS=30)
def test_validity_window_is_not_configurable() -> None:
    decision = create_decision_engine().make_decision(AnalysisResult(), now=NOW)
    assert decision.valid_until - NOW == timedelta(minutes=5)


def test_percentages_round_half_up() -> None:
    assert [round_half_up(value) for value in (0.5, 2.5, 72.5, 72.49, -0.5)] == [1, 3, 73, 72, 0]
    analysis = AnalysisResult(
        patterns=[DetectedPattern(type="Pin Bar", confidence=0.85, action="compra")],
        confluence_score=72.5,
    )
    decision = create_decision_engine().make_decision(analysis, now=NOW)
    assert decision.action == "BUY"
    assert decision.reasoning[0] == "Sinal BUY com confiança 72%"
    assert decision.reasoning[2] == "Score de confluência: 73%"
    assert decision.signals["confluence"] == ["Confluência 73%"]


def test_decisions_are_deterministic() -> None:
    analysis = AnalysisResult(
        patterns=[DetectedPattern(type="Pin Bar", confidence=0.85, action="compra")],
        confluence_score=70,
    )
    engine = create_decision_engine()
    assert engine.make_decision(analysis, now=NOW).to_dict() == engine.make_decision(analysis, now=NOW).to_dict()


def test_to_dict_uses_wire_keys() -> None:
    payload = create_decision_engine().make_decision(AnalysisResult(), now=NOW).to_dict()
    assert payload["validUntil"] == "2024-03-01T12:05:00+00:00"
    assert set(payload["signals"]) == {"technical", "confluence", "priceAction"}
    assert "positionSize" in payload and "entryPrice" in payload


def test_strength_components() -> None:
    assert signal_strength([], []) == 0.0
    patterns = [DetectedPattern(type="Engolfo de Alta", confidence=0.95, action="compra")]
    assert signal_strength(patterns, []) == pytest.approx((0.95 + 0.2 + 0.05) * 0.6)
    signals = [PriceActionSignal(type="Breakout", direction="alta")]
    assert signal_strength([], signals) == pytest.approx(0.5 * 0.4)


def test_direction_needs_margin() -> None:
    near = [
        DetectedPattern(type="A", confidence=0.6, action="compra"),
        DetectedPattern(type="B", confidence=0.4, action="venda"),
    ]
    assert predominant_direction(near, []) == "NEUTRAL"
    signals = [PriceActionSignal(type="C", direction="baixa", confidence=0.9)]
    assert predominant_direction([], signals) == "SELL"


def test_consistency() -> None:
    assert signal_consistency([], []) == 0.0
    mixed = [
        DetectedPattern(type="A", confidence=0.6, action="compra"),
        DetectedPattern(type="B", confidence=0.6, action="venda"),
    ]
    assert signal_consistency(mixed, []) == pytest.approx(0.75)
    lateral = [PriceActionSignal(type="R", direction="lateral")]
    assert signal_consistency([], lateral) == 0.0


def test_urgency_and_size_bounds() -> None:
    assert urgency_for(0.81) == "HIGH"
    assert urgency_for(0.8) == "MEDIUM"
    assert urgency_for(0.6) == "LOW"
    assert position_size(0.0) == pytest.approx(0.01)
    assert position_size(1.0) == pytest.approx(0.05)


def test_analysis_from_camel_case_payload() -> None:
    analysis = AnalysisResult.from_dict(
        {
            "patterns": [{"type": "Pin Bar", "confidence": 0.85, "action": "compra", "description": "x"}],
            "priceActionSignals": [{"type": "Rompimento", "direction": "alta", "riskReward": 2.5}],
            "confluences": {"confluenceScore": 72},
            "entryRecommendations": [{"action": "compra", "entryPrice": 1.5, "stopLoss": 1.4, "takeProfit": 1.7}],
        }
    )
    assert analysis.confluence_score == 72
    assert analysis.price_action_signals[0].effective_confidence == 0.5
    assert analysis.price_action_signals[0].risk_reward == 2.5
    assert analysis.entry_recommendations[0].take_profit == 1.7

    snake = AnalysisResult.from_dict({"confluence_score": 40, "price_action_signals": [{"type": "x"}]})
    assert snake.confluence_score == 40
    assert snake.price_action_signals[0].direction == "lateral"


def test_engine_accepts_custom_criteria() -> None:
    engine = TradingDecisionEngine(DecisionCriteria(min_confidence=0.45, required_confluences=0))
    analysis = AnalysisResult(patterns=[DetectedPattern(type="Pin Bar", confidence=0.85, action="compra")])
    decision = engine.make_decision(analysis, now=NOW)
    assert decision.action == "BUY"
    assert decision.reasoning[:2] == ["Sinal BUY com confiança 50%", "1 padrões técnicos confirmam a direção"]
    assert decision.signals["confluence"] == []
