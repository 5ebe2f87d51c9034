"""Commit-published domain events.

Use-cases queue events on the session; they are delivered to subscribers only
after the surrounding transaction commits and dropped on rollback. Subscribers
(websocket fan-out, cache invalidation, ...) live outside the core.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_domain_events"

REQUIREMENT_STATUS_CHANGED = "requirement.status_changed"
REMINDER_JOB_CHANGED = "reminder_job.changed"


@dataclass(frozen=True)
class DomainEvent:
    kind: str
    entity_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[DomainEvent], None]


class EventChannel:
    """In-process fan-out keyed by event kind ("*" receives everything)."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, kind: str, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(kind, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def publish(self, domain_event: DomainEvent) -> None:
        for handler in [*self._handlers.get(domain_event.kind, []), *self._handlers.get("*", [])]:
            try:
                handler(domain_event)
            except Exception:
                logger.exception("Event subscriber failed for %s %s", domain_event.kind, domain_event.entity_id)


channel = EventChannel()


def queue_event(db: Session, domain_event: DomainEvent) -> None:
    """Buffer an event until the session commits."""
    db.info.setdefault(_PENDING_KEY, []).append(domain_event)


@event.listens_for(Session, "after_commit")
def _publish_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for domain_event in pending:
        channel.publish(domain_event)


@event.listens_for(Session, "after_rollback")
def _discard_pending(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
