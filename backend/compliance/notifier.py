"""Outbound notification adapters.

The core only depends on `Notifier.send`; it must be safe to call
at-least-once and report success or failure synchronously.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from .config import settings
from .domain_errors import NotifierFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotifierReceipt:
    id: str | None
    status: str = "sent"


class Notifier(Protocol):
    def send(self, to: Sequence[str], template_key: str, context: dict[str, Any]) -> NotifierReceipt:
        ...


class EmailApiNotifier:
    """Send template-keyed mail through a transactional mail HTTP API.

    Rendering happens on the provider side; this adapter only ships the
    template key and its variables.
    """

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
        timeout: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url or settings.EMAIL_API_URL
        self.api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self.sender = sender or settings.EMAIL_FROM
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def send(self, to: Sequence[str], template_key: str, context: dict[str, Any]) -> NotifierReceipt:
        if not self.api_key:
            raise NotifierFailure("EMAIL_API_KEY not configured")
        recipients = [address for address in to if address]
        if not recipients:
            raise NotifierFailure("NO_RECIPIENTS")

        try:
            response = self.session.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": recipients,
                    "template": template_key,
                    "variables": context,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotifierFailure(f"EXCEPTION: {e}") from e

        if 200 <= response.status_code < 300:
            try:
                message_id = (response.json() or {}).get("id")
            except ValueError:
                message_id = None
            logger.info("Sent %s to %s recipient(s), id=%s", template_key, len(recipients), message_id)
            return NotifierReceipt(id=message_id, status="sent")

        if response.status_code == 429:
            retry_after = _retry_after_seconds(response)
            raise NotifierFailure(f"RATE_LIMIT:{retry_after}")

        raise NotifierFailure(f"HTTP_{response.status_code}: {response.text[:200]}")


def _retry_after_seconds(response: requests.Response) -> int:
    header = response.headers.get("Retry-After")
    if header and header.isdigit():
        return int(header)
    return 60


def get_notifier() -> Notifier:
    """FastAPI dependency / Celery factory for the configured notifier."""
    return EmailApiNotifier()
