from __future__ import annotations

import json
import logging
import re
from collections import Counter
from threading import Lock
from typing import Any


logger = logging.getLogger("lead_intake")

_metrics_lock = Lock()
_metrics_counter: Counter[str] = Counter()

_MAX_ERROR_CHARS = 300
_SECRET_FIELD_HINTS = ("secret", "signature", "authorization", "api_key", "password", "token")
_EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize(v) for v in value]
    return str(value)


def _redact_field(key: str, value: Any) -> Any:
    lowered = key.lower()
    if any(hint in lowered for hint in _SECRET_FIELD_HINTS):
        return "[redacted]"
    return value


def sanitize_error(exc: BaseException | str) -> str:
    """Trim exception text for logs and mask any email addresses it echoes."""
    text = str(exc)
    text = _EMAIL_PATTERN.sub("[email]", text)
    if len(text) > _MAX_ERROR_CHARS:
        text = text[:_MAX_ERROR_CHARS] + "..."
    return text


def metric_key(name: str, **labels: Any) -> str:
    if not labels:
        return name
    ordered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}|{ordered}"


def incr_metric(name: str, value: int = 1, **labels: Any) -> None:
    key = metric_key(name, **{k: _normalize(v) for k, v in labels.items()})
    with _metrics_lock:
        _metrics_counter[key] += value


def metrics_snapshot() -> dict[str, int]:
    with _metrics_lock:
        return dict(_metrics_counter)


def reset_metrics() -> None:
    with _metrics_lock:
        _metrics_counter.clear()


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: str | None = None,
    **fields: Any,
) -> None:
    payload = {"event": event}
    if request_id:
        payload["request_id"] = request_id
    for key, value in fields.items():
        payload[key] = _normalize(_redact_field(key, value))
    logger.log(level, json.dumps(payload, sort_keys=True))
