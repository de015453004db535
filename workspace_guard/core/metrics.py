"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_rate_limit_block_total: Dict[str, int] = defaultdict(int)
_policy_denied_total: Dict[Tuple[str, str], int] = defaultdict(int)
_invitation_outcome_total: Dict[str, int] = defaultdict(int)
_audit_write_failures_total: Dict[Tuple[str, str], int] = defaultdict(int)
_race_recovered_total: Dict[str, int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_rate_limit_block(*, kind: str) -> None:
    with _lock:
        _rate_limit_block_total[_normalize_label(kind)] += 1


def record_policy_denied(*, kind: str, operation: str) -> None:
    with _lock:
        _policy_denied_total[(_normalize_label(kind), _normalize_label(operation))] += 1


def record_invitation_outcome(*, outcome: str) -> None:
    with _lock:
        _invitation_outcome_total[_normalize_label(outcome)] += 1


def record_audit_write_failure(*, entity: str, mode: str) -> None:
    with _lock:
        _audit_write_failures_total[(_normalize_label(entity), _normalize_label(mode))] += 1


def record_race_recovered(*, kind: str) -> None:
    with _lock:
        _race_recovered_total[_normalize_label(kind)] += 1


def _render_counter(
    lines: list[str],
    *,
    name: str,
    help_text: str,
    label_names: Tuple[str, ...],
    values: Dict,
) -> None:
    lines.append(f"# HELP {name} {help_text}")
    lines.append(f"# TYPE {name} counter")
    for key, value in sorted(values.items()):
        label_values = key if isinstance(key, tuple) else (key,)
        labels = ",".join(
            f'{label}="{_escape_label(str(label_value))}"'
            for label, label_value in zip(label_names, label_values)
        )
        lines.append(f"{name}{{{labels}}} {value}")


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        rate_limit_total = dict(_rate_limit_block_total)
        policy_denied_total = dict(_policy_denied_total)
        invitation_outcome_total = dict(_invitation_outcome_total)
        audit_write_failures_total = dict(_audit_write_failures_total)
        race_recovered_total = dict(_race_recovered_total)

    lines = [
        "# HELP workspace_guard_build_info Build metadata.",
        "# TYPE workspace_guard_build_info gauge",
        (
            f'workspace_guard_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP workspace_guard_process_uptime_seconds Process uptime in seconds.",
        "# TYPE workspace_guard_process_uptime_seconds gauge",
        f"workspace_guard_process_uptime_seconds {uptime:.6f}",
    ]

    _render_counter(
        lines,
        name="workspace_guard_http_requests_total",
        help_text="Total HTTP requests.",
        label_names=("method", "path", "status"),
        values=http_total,
    )

    lines.extend(
        [
            "# HELP workspace_guard_http_request_duration_seconds Request duration summary.",
            "# TYPE workspace_guard_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'workspace_guard_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'workspace_guard_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    _render_counter(
        lines,
        name="workspace_guard_rate_limit_block_total",
        help_text="Requests blocked by rate limiting.",
        label_names=("kind",),
        values=rate_limit_total,
    )
    _render_counter(
        lines,
        name="workspace_guard_policy_denied_total",
        help_text="Operations denied by the policy evaluator.",
        label_names=("kind", "operation"),
        values=policy_denied_total,
    )
    _render_counter(
        lines,
        name="workspace_guard_invitation_outcome_total",
        help_text="Invitation workflow outcomes.",
        label_names=("outcome",),
        values=invitation_outcome_total,
    )
    _render_counter(
        lines,
        name="workspace_guard_audit_write_failures_total",
        help_text="Audit records that could not be written.",
        label_names=("entity", "mode"),
        values=audit_write_failures_total,
    )
    _render_counter(
        lines,
        name="workspace_guard_race_recovered_total",
        help_text="Uniqueness races recovered as idempotent success.",
        label_names=("kind",),
        values=race_recovered_total,
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _rate_limit_block_total.clear()
        _policy_denied_total.clear()
        _invitation_outcome_total.clear()
        _audit_write_failures_total.clear()
        _race_recovered_total.clear()
    _started_at = time.time()
