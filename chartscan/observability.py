from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Iterator
import json
import logging
import os
import threading
import time
import uuid

try:  # pragma: no cover - platform specific
    import fcntl  # type: ignore
except Exception:  # pragma: no cover
    fcntl = None  # type: ignore

from django.conf import settings

METRICS_FILENAME = "telemetry.ndjson"
_METRIC_LOCK = threading.Lock()
LOGGER = logging.getLogger(__name__)


def metrics_path() -> Path:
    """Telemetry file under the current ``DATA_CACHE_DIR`` (follows overrides)."""
    return Path(settings.DATA_CACHE_DIR) / METRICS_FILENAME


def _metrics_max_bytes() -> int:
    raw = getattr(settings, "METRICS_MAX_BYTES", None)
    if raw is None:
        raw = os.environ.get("METRICS_MAX_BYTES", str(5 * 1024 * 1024))
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def _lock_file_handle(handle: IO[str]) -> None:
    if fcntl:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file_handle(handle: IO[str]) -> None:
    if fcntl:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def ensure_request_id(request: Any | None = None) -> str:
    """Read or create a request id (X-Request-ID and proxy trace headers)."""
    header_keys = ("HTTP_X_REQUEST_ID", "HTTP_X_AMZN_TRACE_ID", "HTTP_CF_RAY")
    if request is not None:
        meta = getattr(request, "META", None) or {}
        for key in header_keys:
            value = meta.get(key)
            if value:
                return value.strip()
        attr = getattr(request, "_generated_request_id", None)
        if attr:
            return attr
        new_id = uuid.uuid4().hex
        setattr(request, "_generated_request_id", new_id)
        return new_id
    return uuid.uuid4().hex


def record_metric(event: str, **fields: Any) -> None:
    ts = datetime.now(timezone.utc)
    entry = {
        "event": event,
        "ts": ts.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
    }
    entry.update({k: v for k, v in fields.items() if v is not None})
    try:
        payload = json.dumps(entry, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        LOGGER.warning("Failed to serialize metric %s: %s", event, exc)
        return
    path = metrics_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with _METRIC_LOCK:
            _rotate_metrics_file(path)
            with path.open("a", encoding="utf-8") as fh:
                try:
                    _lock_file_handle(fh)
                    fh.write(payload + "\n")
                    fh.flush()
                finally:
                    _unlock_file_handle(fh)
    except OSError as exc:  # pragma: no cover - IO errors
        LOGGER.warning("Failed to write metric %s: %s", event, exc)


def _rotate_metrics_file(path: Path) -> None:
    """Size-based rotation keeping a single ``.1`` backup."""
    max_bytes = _metrics_max_bytes()
    if max_bytes <= 0:
        return
    try:
        if not path.exists() or path.stat().st_size <= max_bytes:
            return
        backup = path.with_name(f"{path.name}.1")
        backup.unlink(missing_ok=True)
        path.rename(backup)
    except OSError as exc:  # pragma: no cover
        LOGGER.warning("Failed to rotate metrics file: %s", exc)


@contextmanager
def track_latency(event: str, **fields: Any) -> Iterator[dict]:
    """Records duration & success flag for an event.

    The yielded dict can be filled with extra fields before the block exits.
    """
    start = time.perf_counter()
    success = True
    extra: dict = {}
    try:
        yield extra
    except Exception as exc:
        success = False
        fields.setdefault("error", str(exc))
        raise
    finally:
        fields.update(extra)
        fields["duration_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
        fields["success"] = success
        record_metric(event, **fields)


__all__ = ["ensure_request_id", "record_metric", "track_latency", "metrics_path"]
