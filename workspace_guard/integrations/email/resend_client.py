"""Resend API client for transactional email."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx

from workspace_guard.core.config import get_settings


class EmailClientError(RuntimeError):
    """Raised when the email provider rejects or fails a request."""


class ResendClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.resend.com",
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self, idempotency_key: Optional[str]) -> Dict[str, str]:
        if not self._api_key:
            raise EmailClientError("email_api_key_missing")
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _post(self, path: str, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        url = f"{self._base_url}{path}"
        if self._client is not None:
            return self._client.post(url, headers=headers, json=payload)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.post(url, headers=headers, json=payload)

    def send_email(
        self,
        *,
        from_address: str,
        to: List[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        recipients = [recipient.strip() for recipient in to if recipient.strip()]
        if not recipients:
            raise EmailClientError("email_recipients_missing")
        if not from_address.strip():
            raise EmailClientError("email_from_address_missing")
        if not subject.strip():
            raise EmailClientError("email_subject_missing")
        if not html.strip():
            raise EmailClientError("email_body_missing")

        payload: Dict[str, Any] = {
            "from": from_address.strip(),
            "to": recipients,
            "subject": subject.strip(),
            "html": html,
        }
        if text:
            payload["text"] = text

        try:
            response = self._post("/emails", payload, self._headers(idempotency_key))
        except httpx.HTTPError as exc:
            raise EmailClientError(f"email_provider_unreachable error={exc.__class__.__name__}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 200:
                detail = detail[:200] + "..."
            raise EmailClientError(
                f"email_provider_request_failed status={response.status_code} detail={detail}"
            )

        try:
            body = response.json()
        except ValueError as exc:  # pragma: no cover
            raise EmailClientError("email_provider_invalid_json_response") from exc
        if not isinstance(body, dict):
            raise EmailClientError("email_provider_invalid_payload")
        return body


@lru_cache(maxsize=1)
def get_resend_client() -> ResendClient:
    settings = get_settings()
    return ResendClient(
        api_key=settings.email_api_key,
        base_url=settings.email_api_base_url,
        timeout_seconds=settings.email_api_timeout_seconds,
    )
