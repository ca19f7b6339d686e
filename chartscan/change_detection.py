from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

try:
    from django.conf import settings
except Exception:  # pragma: no cover - optional during isolated use
    settings = None  # type: ignore

from .decision_engine import round_half_up

LOGGER = logging.getLogger(__name__)

NEUTRAL_SIGNAL = "neutro"
DEFAULT_TIMEFRAME = "1m"
SENSITIVITY_MULTIPLIERS: Dict[str, float] = {"high": 1.2, "medium": 1.0, "low": 0.8}
NOISE_WINDOW = 5
NOISE_MIN_CHANGES = 3
NOISE_PENALTY = 0.7


def _get_setting(name: str, default):
    if settings is None or not settings.configured:
        return default
    return getattr(settings, name, default)


def _pick(payload: Dict[str, Any], *keys: str, default=None):
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


@dataclass(slots=True)
class AnalysisSnapshot:
    signal: str
    confidence: float
    timestamp: float = 0.0
    patterns: List[str] = field(default_factory=list)
    confluence: float = 0.0
    price_action: List[Any] = field(default_factory=list)
    market_phase: str = ""
    trend: str = ""
    volume: Optional[float] = None
    volatility: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AnalysisSnapshot":
        signal = payload.get("signal")
        if not signal:
            raise ValueError("snapshot signal is required")
        volume = payload.get("volume")
        volatility = payload.get("volatility")
        return cls(
            signal=str(signal),
            confidence=float(payload.get("confidence") or 0.0),
            timestamp=float(payload.get("timestamp") or time.time() * 1000.0),
            patterns=[str(item) for item in payload.get("patterns") or []],
            confluence=float(payload.get("confluence") or 0.0),
            price_action=list(_pick(payload, "priceAction", "price_action", default=[])),
            market_phase=str(_pick(payload, "marketPhase", "market_phase", default="")),
            trend=str(payload.get("trend") or ""),
            volume=float(volume) if volume is not None else None,
            volatility=float(volatility) if volatility is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ChangeDetectionOptions:
    sensitivity: str = "medium"
    timeframe_context: Optional[str] = None
    consider_volume: bool = False
    consider_volatility: bool = False

    @property
    def timeframe(self) -> str:
        return self.timeframe_context or DEFAULT_TIMEFRAME

    @property
    def multiplier(self) -> float:
        return SENSITIVITY_MULTIPLIERS.get(self.sensitivity, 1.0)


@dataclass(slots=True)
class ChangeDetectionResult:
    significant_change: bool
    change_type: str
    change_strength: float
    confidence: float
    timeframe: str
    current_signal: str
    market_impact: str
    trading_recommendation: str
    previous_signal: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "significantChange": self.significant_change,
            "changeType": self.change_type,
            "changeStrength": self.change_strength,
            "confidence": self.confidence,
            "timeframe": self.timeframe,
            "previousSignal": self.previous_signal,
            "currentSignal": self.current_signal,
            "marketImpact": self.market_impact,
            "tradingRecommendation": self.trading_recommendation,
        }


@dataclass(slots=True)
class HistoryStats:
    total_analyses: int
    average_confidence: int
    signal_changes: int
    change_frequency: float
    current_trend: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAnalyses": self.total_analyses,
            "averageConfidence": self.average_confidence,
            "signalChanges": self.signal_changes,
            "changeFrequency": self.change_frequency,
            "currentTrend": self.current_trend,
        }


def _count_signal_changes(snapshots: Sequence[AnalysisSnapshot]) -> int:
    return sum(1 for prev, curr in zip(snapshots, snapshots[1:]) if prev.signal != curr.signal)


def change_strength(previous: AnalysisSnapshot, current: AnalysisSnapshot, multiplier: float = 1.0) -> float:
    strength = 0.0
    if previous.signal != current.signal:
        strength += 0.4
    strength += min(0.25, abs(current.confidence - previous.confidence) * 0.5)
    strength += min(0.2, abs(current.confluence - previous.confluence) / 100.0 * 0.4)
    new_patterns = [p for p in current.patterns if p not in previous.patterns]
    strength += min(0.15, len(new_patterns) * 0.05)
    return min(1.0, strength * multiplier)


def classify_change(previous: AnalysisSnapshot, current: AnalysisSnapshot) -> str:
    signal_changed = previous.signal != current.signal
    if previous.signal == NEUTRAL_SIGNAL and current.signal != NEUTRAL_SIGNAL:
        return "breakout"
    if signal_changed and previous.signal != NEUTRAL_SIGNAL and current.signal != NEUTRAL_SIGNAL:
        return "reversal"
    if not signal_changed and current.signal != NEUTRAL_SIGNAL:
        if abs(current.confidence - previous.confidence) > 0.3:
            return "momentum_shift"
        return "continuation"
    return "consolidation"


def detection_confidence(signal_changed: bool, strength: float, history: Sequence[AnalysisSnapshot]) -> float:
    confidence = 0.5
    if signal_changed:
        confidence += 0.3
    if strength > 0.7:
        confidence += 0.2
    if len(history) >= 3:
        latest = history[-1].signal
        agreeing = sum(1 for snap in history[-3:] if snap.signal == latest)
        confidence += (agreeing / 3.0) * 0.15
    if len(history) >= NOISE_WINDOW:
        if _count_signal_changes(history[-NOISE_WINDOW:]) >= NOISE_MIN_CHANGES:
            confidence *= NOISE_PENALTY
    return max(0.1, min(1.0, confidence))


def market_impact(current: AnalysisSnapshot, change_type: str, strength: float) -> str:
    if change_type in ("breakout", "reversal") and strength > 0.7:
        return "high"
    if change_type == "momentum_shift" and current.confidence > 0.8:
        return "high"
    if strength > 0.5 and current.confidence > 0.6:
        return "medium"
    return "low"


def trading_recommendation(change_type: str, current: AnalysisSnapshot, confidence: float, impact: str) -> str:
    if confidence < 0.5:
        return "Aguardar confirmação - baixa confiança"
    signal = current.signal
    if change_type == "breakout":
        if impact == "high":
            return f"ENTRADA FORTE - {signal.upper()} com confirmação"
        return f"Considerar {signal} - breakout detectado"
    if change_type == "reversal":
        if impact == "high":
            return f"REVERSÃO CONFIRMADA - Ajustar posição para {signal.upper()}"
        return f"Cautela - possível reversão para {signal}"
    if change_type == "momentum_shift":
        return f"Momentum {'forte' if current.confidence > 0.8 else 'moderado'} - {signal}"
    if change_type == "continuation":
        return f"Manter direção {signal} - continuação confirmada"
    return "Monitorar - mercado em consolidação"


class SmartChangeDetector:
    """Bounded FIFO of snapshots that classifies how the market read moved.

    Each instance owns its history; callers that share one instance across
    threads are serialized by the instance lock.
    """

    def __init__(self, max_history: Optional[int] = None):
        size = int(max_history if max_history is not None else _get_setting("CHARTSCAN_CHANGE_HISTORY_MAX", 10))
        if size < 1:
            raise ValueError("max_history must be positive")
        self._history: Deque[AnalysisSnapshot] = deque(maxlen=size)
        self._lock = threading.Lock()

    @property
    def max_history(self) -> int:
        return self._history.maxlen or 0

    @property
    def history(self) -> Tuple[AnalysisSnapshot, ...]:
        with self._lock:
            return tuple(self._history)

    def detect_smart_changes(
        self,
        current: AnalysisSnapshot,
        options: Optional[ChangeDetectionOptions] = None,
    ) -> ChangeDetectionResult:
        options = options or ChangeDetectionOptions()
        with self._lock:
            self._history.append(current)
            history = tuple(self._history)

        if len(history) < 2:
            return ChangeDetectionResult(
                significant_change=False,
                change_type="consolidation",
                change_strength=0.0,
                confidence=0.3,
                timeframe=options.timeframe,
                current_signal=current.signal,
                market_impact="low",
                trading_recommendation="Aguardar mais dados",
            )

        previous = history[-2]
        signal_changed = previous.signal != current.signal
        strength = change_strength(previous, current, options.multiplier)
        change_type = classify_change(previous, current)
        confidence = detection_confidence(signal_changed, strength, history)
        impact = market_impact(current, change_type, strength)
        recommendation = trading_recommendation(change_type, current, confidence, impact)
        LOGGER.debug(
            "Change %s -> %s: type=%s strength=%.3f confidence=%.3f impact=%s",
            previous.signal,
            current.signal,
            change_type,
            strength,
            confidence,
            impact,
        )
        return ChangeDetectionResult(
            significant_change=strength > 0.5 and confidence > 0.6,
            change_type=change_type,
            change_strength=strength,
            confidence=confidence,
            timeframe=options.timeframe,
            previous_signal=previous.signal,
            current_signal=current.signal,
            market_impact=impact,
            trading_recommendation=recommendation,
        )

    def clear_analysis_history(self) -> None:
        with self._lock:
            self._history.clear()
        LOGGER.debug("Change history cleared")

    def get_history_stats(self) -> Optional[HistoryStats]:
        history = self.history
        if not history:
            return None
        changes = _count_signal_changes(history)
        average = sum(snap.confidence for snap in history) / len(history)
        return HistoryStats(
            total_analyses=len(history),
            average_confidence=round_half_up(average * 100),
            signal_changes=changes,
            change_frequency=changes / max(1, len(history) - 1),
            current_trend=history[-1].trend or "unknown",
        )


@dataclass(slots=True)
class _SessionEntry:
    detector: SmartChangeDetector
    ts: float


_SESSION_TTL = int(_get_setting("CHARTSCAN_SESSION_TTL", 900))
_SESSION_MAX = int(_get_setting("CHARTSCAN_SESSION_MAX", 200))
_SESSIONS: Dict[str, _SessionEntry] = {}
_SESSION_LOCK = threading.Lock()


def _prune_sessions(now: float) -> None:
    expired = [key for key, entry in _SESSIONS.items() if now - entry.ts > _SESSION_TTL]
    for key in expired:
        _SESSIONS.pop(key, None)


def get_session_detector(session_id: str) -> SmartChangeDetector:
    """Return the detector owned by ``session_id``, creating it on first use."""
    now = time.time()
    with _SESSION_LOCK:
        _prune_sessions(now)
        entry = _SESSIONS.get(session_id)
        if entry is None:
            if len(_SESSIONS) >= _SESSION_MAX:
                oldest = sorted(_SESSIONS.items(), key=lambda item: item[1].ts)[: max(1, _SESSION_MAX // 4)]
                for key, _ in oldest:
                    _SESSIONS.pop(key, None)
            entry = _SessionEntry(detector=SmartChangeDetector(), ts=now)
            _SESSIONS[session_id] = entry
        else:
            entry.ts = now
        return entry.detector


def drop_session_detector(session_id: str) -> bool:
    with _SESSION_LOCK:
        return _SESSIONS.pop(session_id, None) is not None


__all__ = [
    "AnalysisSnapshot",
    "ChangeDetectionOptions",
    "ChangeDetectionResult",
    "HistoryStats",
    "SmartChangeDetector",
    "change_strength",
    "classify_change",
    "detection_confidence",
    "market_impact",
    "trading_recommendation",
    "get_session_detector",
    "drop_session_detector",
]
