"""
Проверки конфигурации на старте.

Ошибки конфигурации фатальны только здесь: в рабочем цикле их не бывает.
"""

from __future__ import annotations

from dataclasses import dataclass

from meeting_reconciler.common.config import Settings
from meeting_reconciler.common.durations import parse_duration
from meeting_reconciler.common.errors import ConfigError
from meeting_reconciler.common.logging import get_project_logger

log = get_project_logger()


@dataclass
class ReadinessIssue:
    severity: str  # error|warning
    code: str
    message: str


@dataclass
class ReadinessState:
    ready: bool
    issues: list[ReadinessIssue]


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def evaluate_readiness(s: Settings) -> ReadinessState:
    issues: list[ReadinessIssue] = []

    if _blank(s.push_api_key):
        issues.append(
            ReadinessIssue(
                severity="error",
                code="push_api_key_empty",
                message="PUSH_API_KEY не задан",
            )
        )
    if _blank(s.mongo_host):
        issues.append(
            ReadinessIssue(severity="error", code="mongo_host_empty", message="MONGO_HOST не задан")
        )
    if _blank(s.mongo_username):
        issues.append(
            ReadinessIssue(
                severity="error", code="mongo_username_empty", message="MONGO_USERNAME не задан"
            )
        )
    if _blank(s.mongo_password):
        issues.append(
            ReadinessIssue(
                severity="error", code="mongo_password_empty", message="MONGO_PASSWORD не задан"
            )
        )

    if s.listener_enabled and not s.listener_port:
        issues.append(
            ReadinessIssue(
                severity="error",
                code="listener_port_empty",
                message="LISTENER_PORT не задан (или LISTENER_ENABLED=false)",
            )
        )

    try:
        if parse_duration(s.reconcile_interval) <= 0:
            raise ValueError("non-positive")
    except ValueError:
        issues.append(
            ReadinessIssue(
                severity="error",
                code="reconcile_interval_invalid",
                message=f"RECONCILE_INTERVAL некорректен: {s.reconcile_interval!r}",
            )
        )

    try:
        if parse_duration(s.reconcile_shutdown_timeout) < 0:
            raise ValueError("negative")
    except ValueError:
        issues.append(
            ReadinessIssue(
                severity="error",
                code="reconcile_shutdown_timeout_invalid",
                message=f"RECONCILE_SHUTDOWN_TIMEOUT некорректен: {s.reconcile_shutdown_timeout!r}",
            )
        )

    try:
        parse_duration(s.mongo_timeout)
    except ValueError:
        issues.append(
            ReadinessIssue(
                severity="warning",
                code="mongo_timeout_invalid",
                message=f"MONGO_TIMEOUT некорректен ({s.mongo_timeout!r}), используется 10s",
            )
        )

    if s.push_retries < 0:
        issues.append(
            ReadinessIssue(
                severity="warning",
                code="push_retries_negative",
                message="PUSH_RETRIES < 0, будет использован 0",
            )
        )

    ready = all(i.severity != "error" for i in issues)
    return ReadinessState(ready=ready, issues=issues)


def enforce_startup_readiness(s: Settings, *, service_name: str) -> ReadinessState:
    state = evaluate_readiness(s)
    errors = [i for i in state.issues if i.severity == "error"]
    warnings = [i for i in state.issues if i.severity == "warning"]

    if warnings:
        log.warning(
            "startup_readiness_warnings",
            extra={"payload": {"service": service_name, "codes": [w.code for w in warnings]}},
        )

    if errors:
        log.error(
            "startup_readiness_failed",
            extra={
                "payload": {
                    "service": service_name,
                    "app_env": s.app_env,
                    "error_codes": [e.code for e in errors],
                }
            },
        )
        msg = ", ".join(e.code for e in errors)
        raise ConfigError(
            f"startup readiness failed for {service_name}: {msg}",
            details={"codes": [e.code for e in errors]},
        )

    log.info(
        "startup_readiness_ok",
        extra={"payload": {"service": service_name, "app_env": s.app_env}},
    )
    return state
