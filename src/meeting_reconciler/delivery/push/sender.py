"""
Push-шлюз GCM/FCM (legacy HTTP API).

Алгоритм:
- POST {"registration_ids": [...], "data": {...}}, Authorization: key=<api key>
- токены режутся на батчи по 1000 (лимит multicast у шлюза)
- retry с экспоненциальным backoff:
  * сетевые ошибки и HTTP 5xx: повторяем весь батч
  * в ответе error=Unavailable/InternalServerError: повторяем только эти токены
  * HTTP 4xx (ключ, формат): не повторяем
"""

from __future__ import annotations

import time
from typing import Any

import requests

from meeting_reconciler.common.config import Settings, get_settings
from meeting_reconciler.common.errors import PushProviderError
from meeting_reconciler.common.logging import get_project_logger

from ..base import PushResult
from ..results import fail_result, merge_results, ok_result

log = get_project_logger()

PROVIDER = "gcm"
MAX_RECIPIENTS_PER_REQUEST = 1000
_MAX_BACKOFF_SEC = 60.0
_RETRYABLE_TOKEN_ERRORS = {"Unavailable", "InternalServerError"}


class _RetryableSendError(Exception):
    def __init__(self, message: str, retry_after_sec: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_sec = retry_after_sec


def _retry_after(resp: requests.Response) -> float | None:
    raw = (resp.headers.get("Retry-After") or "").strip()
    if raw.isdigit():
        return float(raw)
    return None


def _chunks(tokens: list[str], size: int) -> list[list[str]]:
    return [tokens[i : i + size] for i in range(0, len(tokens), size)]


class GcmPushSender:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout_sec: int | None = None,
        backoff_ms: int | None = None,
        settings: Settings | None = None,
    ) -> None:
        s = settings or get_settings()
        self.api_key = (api_key or s.push_api_key or "").strip()
        self.endpoint = (endpoint or s.push_endpoint or "").strip()
        self.timeout_sec = int(timeout_sec if timeout_sec is not None else s.push_timeout_sec)
        backoff = backoff_ms if backoff_ms is not None else s.push_retry_backoff_ms
        self.backoff_sec = max(0, int(backoff)) / 1000.0

    def _post(self, data: dict[str, Any], tokens: list[str]) -> dict[str, Any]:
        headers = {
            "Authorization": f"key={self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"registration_ids": tokens, "data": data}
        try:
            resp = requests.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self.timeout_sec,
            )
        except requests.RequestException as e:
            raise _RetryableSendError(f"transport: {e}") from e

        if resp.status_code >= 500:
            raise _RetryableSendError(f"http {resp.status_code}", _retry_after(resp))
        if resp.status_code != 200:
            raise PushProviderError(
                "Push-шлюз отклонил запрос",
                details={"status": resp.status_code, "body": (resp.text or "")[:300]},
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise PushProviderError("Некорректный ответ push-шлюза") from e
        return body if isinstance(body, dict) else {}

    def _sleep_before_retry(self, backoff: float, retry_after: float | None) -> float:
        delay = max(backoff, retry_after or 0.0)
        if delay > 0:
            time.sleep(delay)
        return min(_MAX_BACKOFF_SEC, backoff * 2 if backoff > 0 else 0.0)

    def _send_batch(self, data: dict[str, Any], batch: list[str], retries: int) -> PushResult:
        attempts = max(0, int(retries)) + 1
        pending = list(batch)
        backoff = self.backoff_sec
        success = 0
        canonical_ids = 0
        failed_tokens: list[str] = []

        for attempt in range(1, attempts + 1):
            try:
                body = self._post(data, pending)
            except _RetryableSendError as e:
                if attempt >= attempts:
                    res = fail_result(PROVIDER, str(e), failed_tokens=failed_tokens + pending)
                    res.success = success
                    res.canonical_ids = canonical_ids
                    return res
                log.warning(
                    "push_send_retry",
                    extra={
                        "payload": {
                            "attempt": attempt,
                            "max_attempts": attempts,
                            "tokens": len(pending),
                            "err": str(e)[:200],
                        }
                    },
                )
                backoff = self._sleep_before_retry(backoff, e.retry_after_sec)
                continue
            except PushProviderError as e:
                res = fail_result(PROVIDER, e.message, failed_tokens=failed_tokens + pending)
                res.success = success
                res.canonical_ids = canonical_ids
                return res

            results = body.get("results") or []
            retry_tokens: list[str] = []
            for idx, token in enumerate(pending):
                item = results[idx] if idx < len(results) and isinstance(results[idx], dict) else {}
                if item.get("message_id"):
                    success += 1
                    if item.get("registration_id"):
                        canonical_ids += 1
                elif item.get("error") in _RETRYABLE_TOKEN_ERRORS:
                    retry_tokens.append(token)
                else:
                    failed_tokens.append(token)

            if not retry_tokens:
                break
            if attempt >= attempts:
                failed_tokens.extend(retry_tokens)
                break
            pending = retry_tokens
            backoff = self._sleep_before_retry(backoff, None)

        return ok_result(
            PROVIDER,
            success=success,
            failure=len(failed_tokens),
            canonical_ids=canonical_ids,
            failed_tokens=failed_tokens,
        )

    def send(self, *, data: dict[str, Any], tokens: list[str], retries: int) -> PushResult:
        if not self.api_key:
            raise PushProviderError("PUSH_API_KEY не настроен")
        if not self.endpoint:
            raise PushProviderError("PUSH_ENDPOINT не настроен")
        if not tokens:
            return PushResult(ok=True, provider=PROVIDER)

        results = [
            self._send_batch(data, batch, retries)
            for batch in _chunks(list(tokens), MAX_RECIPIENTS_PER_REQUEST)
        ]
        return merge_results(PROVIDER, results)
