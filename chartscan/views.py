from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_POST

from .change_detection import AnalysisSnapshot, ChangeDetectionOptions, drop_session_detector, get_session_detector
from .chart_quality import analyze_chart_image
from .decision_engine import AnalysisResult, create_decision_engine
from .observability import ensure_request_id, record_metric, track_latency

LOGGER = logging.getLogger(__name__)


def _error(code: str, request_id: str, status: int = 400) -> JsonResponse:
    return JsonResponse({"error": code, "request_id": request_id}, status=status)


def _read_payload(request: HttpRequest, request_id: str) -> Tuple[Optional[Dict[str, Any]], Optional[JsonResponse]]:
    max_body = int(getattr(settings, "CHARTSCAN_MAX_REQUEST_BYTES", 1_500_000))
    if request.body and len(request.body) > max_body:
        return None, _error("payload_too_large", request_id, status=413)
    try:
        payload = json.loads(request.body.decode("utf-8") or "{}")
    except (ValueError, UnicodeDecodeError):
        return None, _error("invalid_payload", request_id)
    if not isinstance(payload, dict):
        return None, _error("invalid_payload", request_id)
    return payload, None


def _analysis_failed(event: str, request_id: str, exc: Exception) -> JsonResponse:
    LOGGER.exception("%s failed (request_id=%s)", event, request_id)
    record_metric(f"{event}.error", request_id=request_id, error=str(exc))
    return _error("analysis_failed", request_id, status=500)


@require_POST
def chart_pixels_api(request: HttpRequest) -> JsonResponse:
    request_id = ensure_request_id(request)
    payload, error = _read_payload(request, request_id)
    if error is not None:
        return error
    image_data = payload.get("image")
    if not image_data:
        return _error("missing_image", request_id)

    try:
        with track_latency("chartscan.pixels", request_id=request_id) as extra:
            analysis = analyze_chart_image(str(image_data))
            extra["confidence"] = analysis.confidence
            extra["valid"] = analysis.has_valid_chart
    except Exception as exc:  # pragma: no cover - unexpected engine failure
        return _analysis_failed("chartscan.pixels", request_id, exc)

    response = {**analysis.to_dict(), "request_id": request_id}
    return JsonResponse(response, json_dumps_params={"ensure_ascii": False})


@require_POST
def trading_decision_api(request: HttpRequest) -> JsonResponse:
    request_id = ensure_request_id(request)
    payload, error = _read_payload(request, request_id)
    if error is not None:
        return error
    timeframe = str(payload.get("timeframe") or "1m")
    try:
        analysis = AnalysisResult.from_dict(payload)
    except (TypeError, ValueError):
        return _error("invalid_payload", request_id)

    try:
        with track_latency("chartscan.decision", request_id=request_id, timeframe=timeframe) as extra:
            decision = create_decision_engine(timeframe).make_decision(analysis)
            extra["action"] = decision.action
            extra["confidence"] = round(decision.confidence, 4)
    except Exception as exc:  # pragma: no cover - unexpected engine failure
        return _analysis_failed("chartscan.decision", request_id, exc)

    response = {**decision.to_dict(), "request_id": request_id}
    return JsonResponse(response, json_dumps_params={"ensure_ascii": False})


@require_POST
def change_detection_api(request: HttpRequest) -> JsonResponse:
    request_id = ensure_request_id(request)
    payload, error = _read_payload(request, request_id)
    if error is not None:
        return error
    session_id = payload.get("session_id")
    if not session_id:
        return _error("missing_session", request_id)
    raw_snapshot = payload.get("snapshot")
    if not isinstance(raw_snapshot, dict):
        return _error("missing_snapshot", request_id)
    try:
        snapshot = AnalysisSnapshot.from_dict(raw_snapshot)
    except (TypeError, ValueError):
        return _error("invalid_payload", request_id)
    options = ChangeDetectionOptions(
        sensitivity=str(payload.get("sensitivity") or "medium"),
        timeframe_context=payload.get("timeframe_context") or None,
        consider_volume=bool(payload.get("consider_volume", False)),
        consider_volatility=bool(payload.get("consider_volatility", False)),
    )

    detector = get_session_detector(str(session_id))
    try:
        with track_latency("chartscan.changes", request_id=request_id) as extra:
            result = detector.detect_smart_changes(snapshot, options)
            extra["change_type"] = result.change_type
            extra["significant"] = result.significant_change
    except Exception as exc:  # pragma: no cover - unexpected engine failure
        return _analysis_failed("chartscan.changes", request_id, exc)

    stats = detector.get_history_stats()
    response = {
        **result.to_dict(),
        "history_stats": stats.to_dict() if stats else None,
        "request_id": request_id,
    }
    return JsonResponse(response, json_dumps_params={"ensure_ascii": False})


@require_POST
def change_reset_api(request: HttpRequest) -> JsonResponse:
    request_id = ensure_request_id(request)
    payload, error = _read_payload(request, request_id)
    if error is not None:
        return error
    session_id = payload.get("session_id")
    if not session_id:
        return _error("missing_session", request_id)
    cleared = drop_session_detector(str(session_id))
    record_metric("chartscan.changes.reset", request_id=request_id, cleared=cleared)
    return JsonResponse({"cleared": cleared, "request_id": request_id})
