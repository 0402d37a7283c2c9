"""Security events emitted by the token services."""
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging

from authcore.timeutils import utcnow

logger = logging.getLogger(__name__)

SESSION_CREATED = "auth.session.created"
SESSION_REVOKED = "auth.session.revoked"
SESSIONS_REVOKED_ALL = "auth.sessions.revoked_all"
SUSPICIOUS_ACTIVITY = "auth.suspicious_activity"


@dataclass(frozen=True)
class SecurityEvent:
    name: str
    user_id: str
    detail: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


EventSink = Callable[[SecurityEvent], None]


def log_event(event: SecurityEvent) -> None:
    """Default sink."""
    level = logging.WARNING if event.name == SUSPICIOUS_ACTIVITY else logging.INFO
    logger.log(level, f"{event.name} user={event.user_id} {event.detail}")


class EventDispatcher:
    """Fan a security event out to every registered sink.

    A failing sink is logged and skipped; it must not abort the operation
    that emitted the event.
    """

    def __init__(self, sinks: list[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else [log_event]

    def subscribe(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, name: str, user_id: str, **detail) -> SecurityEvent:
        event = SecurityEvent(name=name, user_id=user_id, detail=detail)
        for sink in self._sinks:
            try:
                sink(event)
            except Exception:
                logger.exception(f"Security event sink failed for {name}")
        return event
