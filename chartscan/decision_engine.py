from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

LOGGER = logging.getLogger(__name__)

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"
WAIT = "WAIT"
NEUTRAL = "NEUTRAL"

DIRECTION_THRESHOLD = 0.3
DEFAULT_SIGNAL_CONFIDENCE = 0.5
MIN_POSITION_SIZE = 0.01
MAX_POSITION_SIZE = 0.05
BONUS_PATTERN_TYPES = ("Engolfo", "Pin Bar")
DECISION_VALIDITY = timedelta(minutes=5)

_ACTION_TO_ENTRY = {BUY: "compra", SELL: "venda"}


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up, as displayed percentages expect."""
    return int(math.floor(value + 0.5))


def _pick(payload: Dict[str, Any], *keys: str, default=None):
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class DetectedPattern:
    type: str
    confidence: float
    action: str = "neutro"
    description: str = ""
    recommendation: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DetectedPattern":
        return cls(
            type=str(payload.get("type") or ""),
            confidence=float(payload.get("confidence") or 0.0),
            action=str(payload.get("action") or "neutro"),
            description=str(payload.get("description") or ""),
            recommendation=payload.get("recommendation"),
        )


@dataclass(slots=True)
class PriceActionSignal:
    type: str
    direction: str = "lateral"
    confidence: Optional[float] = None
    strength: Optional[str] = None
    risk_reward: Optional[float] = None

    @property
    def effective_confidence(self) -> float:
        # Missing or zero confidence is read as a coin flip.
        return self.confidence or DEFAULT_SIGNAL_CONFIDENCE

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PriceActionSignal":
        return cls(
            type=str(payload.get("type") or ""),
            direction=str(payload.get("direction") or "lateral"),
            confidence=_optional_float(payload.get("confidence")),
            strength=payload.get("strength"),
            risk_reward=_optional_float(_pick(payload, "riskReward", "risk_reward")),
        )


@dataclass(slots=True)
class EntryRecommendation:
    action: str
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EntryRecommendation":
        return cls(
            action=str(payload.get("action") or ""),
            entry_price=_optional_float(_pick(payload, "entryPrice", "entry_price")),
            stop_loss=_optional_float(_pick(payload, "stopLoss", "stop_loss")),
            take_profit=_optional_float(_pick(payload, "takeProfit", "take_profit")),
            risk_reward=_optional_float(_pick(payload, "riskReward", "risk_reward")),
        )


@dataclass(slots=True)
class AnalysisResult:
    patterns: List[DetectedPattern] = field(default_factory=list)
    price_action_signals: List[PriceActionSignal] = field(default_factory=list)
    confluence_score: float = 0.0
    entry_recommendations: List[EntryRecommendation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AnalysisResult":
        """Accepts the camelCase wire shape as well as snake_case keys.

        ``confluences.confluenceScore`` is honoured when the score is nested
        the way pattern aggregators report it.
        """
        confluence = _pick(payload, "confluenceScore", "confluence_score")
        if confluence is None:
            nested = payload.get("confluences")
            if isinstance(nested, dict):
                confluence = _pick(nested, "confluenceScore", "confluence_score")
        patterns = payload.get("patterns") or []
        signals = _pick(payload, "priceActionSignals", "price_action_signals", default=[])
        entries = _pick(payload, "entryRecommendations", "entry_recommendations", default=[])
        return cls(
            patterns=[DetectedPattern.from_dict(item) for item in patterns if isinstance(item, dict)],
            price_action_signals=[PriceActionSignal.from_dict(item) for item in signals if isinstance(item, dict)],
            confluence_score=float(confluence or 0.0),
            entry_recommendations=[EntryRecommendation.from_dict(item) for item in entries if isinstance(item, dict)],
        )


@dataclass(frozen=True, slots=True)
class DecisionCriteria:
    min_confidence: float
    required_confluences: int
    risk_reward_ratio: float = 2.0
    max_risk_percent: float = 0.02
    timeframe: str = "1m"


@dataclass(slots=True)
class TradingDecision:
    action: str
    confidence: float
    reasoning: List[str]
    urgency: str
    position_size: float
    valid_until: datetime
    signals: Dict[str, List[str]]
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward: Optional[float] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = now or datetime.now(timezone.utc)
        return current >= self.valid_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "entryPrice": self.entry_price,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "riskReward": self.risk_reward,
            "positionSize": self.position_size,
            "urgency": self.urgency,
            "validUntil": self.valid_until.isoformat(),
            "signals": {
                "technical": list(self.signals.get("technical", [])),
                "confluence": list(self.signals.get("confluence", [])),
                "priceAction": list(self.signals.get("price_action", [])),
            },
        }


def _mean(values: Sequence[float]) -> float:
    return sum(values) / max(len(values), 1)


def pattern_strength(pattern: DetectedPattern) -> float:
    strength = pattern.confidence
    if pattern.confidence > 0.8:
        strength += 0.1
    if pattern.confidence > 0.9:
        strength += 0.1
    if any(name in pattern.type for name in BONUS_PATTERN_TYPES):
        strength += 0.05
    return strength


def price_action_strength(signal: PriceActionSignal) -> float:
    strength = signal.effective_confidence
    if signal.strength == "forte":
        strength += 0.15
    if signal.risk_reward and signal.risk_reward > 2:
        strength += 0.1
    return strength


def signal_strength(patterns: Sequence[DetectedPattern], signals: Sequence[PriceActionSignal]) -> float:
    if not patterns and not signals:
        return 0.0
    patterns_part = _mean([pattern_strength(p) for p in patterns])
    signals_part = _mean([price_action_strength(s) for s in signals])
    return patterns_part * 0.6 + signals_part * 0.4


def predominant_direction(patterns: Sequence[DetectedPattern], signals: Sequence[PriceActionSignal]) -> str:
    buy_score = 0.0
    sell_score = 0.0
    for pattern in patterns:
        if pattern.action == "compra":
            buy_score += pattern.confidence
        elif pattern.action == "venda":
            sell_score += pattern.confidence
    for signal in signals:
        if signal.direction == "alta":
            buy_score += signal.effective_confidence
        elif signal.direction == "baixa":
            sell_score += signal.effective_confidence
    if abs(buy_score - sell_score) < DIRECTION_THRESHOLD:
        return NEUTRAL
    return BUY if buy_score > sell_score else SELL


def signal_consistency(patterns: Sequence[DetectedPattern], signals: Sequence[PriceActionSignal]) -> float:
    actions = {p.action for p in patterns if p.action != "neutro"}
    directions = {s.direction for s in signals if s.direction and s.direction != "lateral"}
    if not actions and not directions:
        return 0.0
    action_consistency = 1.0 if len(actions) <= 1 else 0.5
    direction_consistency = 1.0 if len(directions) <= 1 else 0.5
    return (action_consistency + direction_consistency) / 2


def data_quality(patterns: Sequence[DetectedPattern], signals: Sequence[PriceActionSignal]) -> float:
    quality = 0.5
    if len(patterns) >= 2:
        quality += 0.2
    if len(signals) >= 1:
        quality += 0.2
    if _mean([p.confidence for p in patterns]) > 0.7:
        quality += 0.1
    return min(1.0, quality)


def total_confidence(
    strength: float,
    confluence_score: float,
    patterns: Sequence[DetectedPattern],
    signals: Sequence[PriceActionSignal],
) -> float:
    confidence = strength * 0.4
    confidence += (confluence_score / 100.0) * 0.3
    confidence += signal_consistency(patterns, signals) * 0.2
    confidence += data_quality(patterns, signals) * 0.1
    return min(1.0, max(0.0, confidence))


def position_size(confidence: float) -> float:
    return min(MAX_POSITION_SIZE, MIN_POSITION_SIZE + confidence * 0.04)


def urgency_for(confidence: float) -> str:
    if confidence > 0.8:
        return "HIGH"
    if confidence > 0.6:
        return "MEDIUM"
    return "LOW"


def _fmt_level(value: Optional[float]) -> str:
    return f"{value:.4f}" if value is not None else "None"


class TradingDecisionEngine:
    """Turns one aggregated chart analysis into a single discrete decision."""

    def __init__(self, criteria: DecisionCriteria):
        self._criteria = criteria

    @property
    def criteria(self) -> DecisionCriteria:
        return self._criteria

    def make_decision(self, analysis: AnalysisResult, now: Optional[datetime] = None) -> TradingDecision:
        criteria = self._criteria
        patterns = analysis.patterns
        signals = analysis.price_action_signals
        confluence = analysis.confluence_score

        strength = signal_strength(patterns, signals)
        has_confluences = confluence >= criteria.required_confluences * 10
        direction = predominant_direction(patterns, signals)
        confidence = total_confidence(strength, confluence, patterns, signals)
        LOGGER.debug(
            "Decision inputs: strength=%.3f confluence=%.1f direction=%s confidence=%.3f",
            strength,
            confluence,
            direction,
            confidence,
        )

        reasoning: List[str] = []
        decision_signals: Dict[str, List[str]] = {
            "technical": [p.type for p in patterns],
            "confluence": [],
            "price_action": [s.type for s in signals],
        }
        action = WAIT
        urgency = "LOW"
        if confidence >= criteria.min_confidence and has_confluences:
            if direction in (BUY, SELL):
                action = direction
                urgency = urgency_for(confidence)
                reasoning.append(f"Sinal {direction} com confiança {round_half_up(confidence * 100)}%")
                reasoning.append(f"{len(patterns)} padrões técnicos confirmam a direção")
                if confluence:
                    reasoning.append(f"Score de confluência: {round_half_up(confluence)}%")
                    decision_signals["confluence"].append(f"Confluência {round_half_up(confluence)}%")
            else:
                action = HOLD
                reasoning.append("Sinais conflitantes - aguardando confirmação")
        else:
            shown = round_half_up(confidence * 100)
            minimum = round_half_up(criteria.min_confidence * 100)
            reasoning.append(f"Confiança {shown}% abaixo do mínimo {minimum}%")
            if not has_confluences:
                reasoning.append("Confluências insuficientes para confirmar entrada")

        entry_price = stop_loss = take_profit = risk_reward = None
        if action in (BUY, SELL) and analysis.entry_recommendations:
            wanted = _ACTION_TO_ENTRY[action]
            best = next(
                (rec for rec in analysis.entry_recommendations if rec.action == wanted),
                analysis.entry_recommendations[0],
            )
            entry_price = best.entry_price
            stop_loss = best.stop_loss
            take_profit = best.take_profit
            risk_reward = best.risk_reward or criteria.risk_reward_ratio
            reasoning.append(
                f"Entrada: {_fmt_level(entry_price)} | SL: {_fmt_level(stop_loss)} | TP: {_fmt_level(take_profit)}"
            )

        issued_at = now or datetime.now(timezone.utc)
        LOGGER.info("Decision %s confidence=%.2f urgency=%s", action, confidence, urgency)
        return TradingDecision(
            action=action,
            confidence=confidence,
            reasoning=reasoning,
            urgency=urgency,
            position_size=position_size(confidence),
            valid_until=issued_at + DECISION_VALIDITY,
            signals=decision_signals,
            entry_price=entry_price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_reward=risk_reward,
        )


def criteria_for_timeframe(timeframe: str = "1m") -> DecisionCriteria:
    fast = timeframe == "1m"
    return DecisionCriteria(
        min_confidence=0.65 if fast else 0.70,
        required_confluences=6 if fast else 7,
        risk_reward_ratio=2.0,
        max_risk_percent=0.02,
        timeframe=timeframe,
    )


def create_decision_engine(timeframe: str = "1m") -> TradingDecisionEngine:
    return TradingDecisionEngine(criteria_for_timeframe(timeframe))


__all__ = [
    "DetectedPattern",
    "PriceActionSignal",
    "EntryRecommendation",
    "AnalysisResult",
    "DecisionCriteria",
    "TradingDecision",
    "TradingDecisionEngine",
    "signal_strength",
    "predominant_direction",
    "signal_consistency",
    "data_quality",
    "total_confidence",
    "position_size",
    "urgency_for",
    "round_half_up",
    "criteria_for_timeframe",
    "create_decision_engine",
]
