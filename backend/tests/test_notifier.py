from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from compliance.domain_errors import NotifierFailure
from compliance.notifier import EmailApiNotifier


class _SessionStub:
    def __init__(self, *, response=None, exc=None):
        self._response = response
        self._exc = exc
        self.posts: list[dict] = []

    def post(self, url, **kwargs):
        self.posts.append({"url": url, **kwargs})
        if self._exc is not None:
            raise self._exc
        return self._response


def _response(status_code: int, *, payload=None, text: str = "", headers=None):
    def _json():
        if payload is None:
            raise ValueError("no json")
        return payload

    return SimpleNamespace(status_code=status_code, json=_json, text=text, headers=headers or {})


def _notifier(session) -> EmailApiNotifier:
    return EmailApiNotifier(
        api_url="https://mail.example/send",
        api_key="key-123",
        sender="Compliance <noreply@example.com>",
        timeout=5,
        session=session,
    )


def test_success_returns_provider_id_and_posts_template_payload() -> None:
    session = _SessionStub(response=_response(200, payload={"id": "em_1"}))

    receipt = _notifier(session).send(["a@example.com"], "reminder_soft", {"attemptNumber": 2})

    assert receipt.id == "em_1"
    post = session.posts[0]
    assert post["url"] == "https://mail.example/send"
    assert post["headers"] == {"Authorization": "Bearer key-123"}
    assert post["json"]["template"] == "reminder_soft"
    assert post["json"]["to"] == ["a@example.com"]
    assert post["json"]["variables"] == {"attemptNumber": 2}
    assert post["timeout"] == 5


def test_rate_limit_carries_retry_after() -> None:
    session = _SessionStub(response=_response(429, headers={"Retry-After": "30"}))

    with pytest.raises(NotifierFailure, match="RATE_LIMIT:30"):
        _notifier(session).send(["a@example.com"], "reminder_soft", {})


def test_rate_limit_without_header_defaults_to_a_minute() -> None:
    session = _SessionStub(response=_response(429))

    with pytest.raises(NotifierFailure, match="RATE_LIMIT:60"):
        _notifier(session).send(["a@example.com"], "reminder_soft", {})


def test_http_error_is_reported_with_status() -> None:
    session = _SessionStub(response=_response(500, text="internal"))

    with pytest.raises(NotifierFailure, match="HTTP_500: internal"):
        _notifier(session).send(["a@example.com"], "escalation", {})


def test_transport_error_is_wrapped() -> None:
    session = _SessionStub(exc=requests.ConnectionError("refused"))

    with pytest.raises(NotifierFailure, match="EXCEPTION: refused"):
        _notifier(session).send(["a@example.com"], "invite_initial", {})


def test_missing_api_key_fails_before_any_request() -> None:
    session = _SessionStub(response=_response(200, payload={"id": "x"}))
    notifier = EmailApiNotifier(api_url="https://mail.example/send", api_key="", session=session)

    with pytest.raises(NotifierFailure, match="EMAIL_API_KEY"):
        notifier.send(["a@example.com"], "invite_initial", {})
    assert session.posts == []
