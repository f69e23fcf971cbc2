from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_TENANT_FETCH_BUCKETS_MS = (50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0, 60000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id and request_id != "n/a":
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_") or key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._http_request_total: Dict[tuple[str, str, str], int] = {}
        self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}
        self._tenant_fetch_total: Dict[tuple[str, str], int] = {}
        self._tenant_fetch_errors_total: Dict[tuple[str, str], int] = {}
        self._tenant_fetch_duration_ms: Dict[str, dict] = {}
        self._identity_fuzzy_match_total: Dict[str, int] = {}
        self._approval_action_total: Dict[tuple[str, str], int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    @staticmethod
    def _bump(counter: dict, key) -> None:
        counter[key] = int(counter.get(key, 0)) + 1

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        with self._lock:
            self._bump(self._http_request_total, (method_key, route_key, str(int(status_code))))
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_tenant_fetch(self, tenant_id: str, error_kind: str | None, duration_ms: float) -> None:
        tenant_key = str(tenant_id or "unknown").strip() or "unknown"
        result = "failed" if error_kind else "succeeded"
        with self._lock:
            self._bump(self._tenant_fetch_total, (tenant_key, result))
            if error_kind:
                self._bump(self._tenant_fetch_errors_total, (tenant_key, str(error_kind)))
            histogram = self._tenant_fetch_duration_ms.setdefault(
                tenant_key,
                self._new_histogram_state(_TENANT_FETCH_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _TENANT_FETCH_BUCKETS_MS)

    def observe_identity_fuzzy_match(self, rule: str) -> None:
        with self._lock:
            self._bump(self._identity_fuzzy_match_total, str(rule or "unknown"))

    def observe_approval_action(self, decision: str, result: str) -> None:
        with self._lock:
            self._bump(self._approval_action_total, (str(decision or "unknown"), str(result or "unknown")))

    def snapshot(self) -> dict:
        with self._lock:
            requests_total = sum(self._http_request_total.values())
            errors_total = sum(
                value for (_method, _route, status), value in self._http_request_total.items() if int(status) >= 400
            )
            return {
                "requests_total": requests_total,
                "errors_total": errors_total,
                "tenant_fetch": {f"{tenant}:{result}": value for (tenant, result), value in self._tenant_fetch_total.items()},
                "approval_actions": {
                    f"{decision}:{result}": value for (decision, result), value in self._approval_action_total.items()
                },
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            return {
                "http_request_total": dict(self._http_request_total),
                "http_request_duration_ms": {key: _copy_hist(value) for key, value in self._http_request_duration_ms.items()},
                "tenant_fetch_total": dict(self._tenant_fetch_total),
                "tenant_fetch_errors_total": dict(self._tenant_fetch_errors_total),
                "tenant_fetch_duration_ms": {key: _copy_hist(value) for key, value in self._tenant_fetch_duration_ms.items()},
                "identity_fuzzy_match_total": dict(self._identity_fuzzy_match_total),
                "approval_action_total": dict(self._approval_action_total),
            }

    def reset(self) -> None:
        with self._lock:
            self._http_request_total.clear()
            self._http_request_duration_ms.clear()
            self._tenant_fetch_total.clear()
            self._tenant_fetch_errors_total.clear()
            self._tenant_fetch_duration_ms.clear()
            self._identity_fuzzy_match_total.clear()
            self._approval_action_total.clear()


def _copy_hist(state: dict) -> dict:
    return {"count": state["count"], "sum": state["sum"], "buckets": dict(state["buckets"])}


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_tenant_fetch(tenant_id: str, error_kind: str | None, duration_ms: float) -> None:
    _METRICS.observe_tenant_fetch(tenant_id, error_kind, duration_ms)


def observe_identity_fuzzy_match(rule: str) -> None:
    _METRICS.observe_identity_fuzzy_match(rule)


def observe_approval_action(decision: str, result: str) -> None:
    _METRICS.observe_approval_action(decision, result)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def _prom_histogram(lines: list[str], name: str, hist: dict, labels: dict[str, object]) -> None:
    for le_label, bucket_value in hist["buckets"].items():
        lines.append(_prom_line(f"{name}_bucket", int(bucket_value), labels=labels | {"le": le_label}))
    lines.append(_prom_line(f"{name}_sum", float(hist["sum"]), labels=labels))
    lines.append(_prom_line(f"{name}_count", int(hist["count"]), labels=labels))


def prometheus_metrics_text() -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for (method, route, status), value in sorted(snapshot["http_request_total"].items()):
        lines.append(_prom_line("http_request_total", int(value), labels={"method": method, "route": route, "status": status}))

    lines.append("# HELP http_request_duration_ms HTTP request duration in milliseconds.")
    lines.append("# TYPE http_request_duration_ms histogram")
    for (method, route), hist in sorted(snapshot["http_request_duration_ms"].items()):
        _prom_histogram(lines, "http_request_duration_ms", hist, {"method": method, "route": route})

    lines.append("# HELP erp_tenant_fetch_total Tenant queries during fan-out by result.")
    lines.append("# TYPE erp_tenant_fetch_total counter")
    for (tenant, result), value in sorted(snapshot["tenant_fetch_total"].items()):
        lines.append(_prom_line("erp_tenant_fetch_total", int(value), labels={"tenant": tenant, "result": result}))

    lines.append("# HELP erp_tenant_fetch_errors_total Tenant query failures by error kind.")
    lines.append("# TYPE erp_tenant_fetch_errors_total counter")
    for (tenant, kind), value in sorted(snapshot["tenant_fetch_errors_total"].items()):
        lines.append(_prom_line("erp_tenant_fetch_errors_total", int(value), labels={"tenant": tenant, "kind": kind}))

    lines.append("# HELP erp_tenant_fetch_duration_ms Tenant query duration in milliseconds.")
    lines.append("# TYPE erp_tenant_fetch_duration_ms histogram")
    for tenant, hist in sorted(snapshot["tenant_fetch_duration_ms"].items()):
        _prom_histogram(lines, "erp_tenant_fetch_duration_ms", hist, {"tenant": tenant})

    lines.append("# HELP approval_identity_fuzzy_match_total Roster matches that needed a fuzzy rule.")
    lines.append("# TYPE approval_identity_fuzzy_match_total counter")
    for rule, value in sorted(snapshot["identity_fuzzy_match_total"].items()):
        lines.append(_prom_line("approval_identity_fuzzy_match_total", int(value), labels={"rule": rule}))

    lines.append("# HELP approval_action_total Approve/reject submissions by decision and result.")
    lines.append("# TYPE approval_action_total counter")
    for (decision, result), value in sorted(snapshot["approval_action_total"].items()):
        lines.append(_prom_line("approval_action_total", int(value), labels={"decision": decision, "result": result}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
