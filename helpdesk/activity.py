"""
Recent-activity log for the dashboard (ticket accepted, assigned, queued, resolved, ...).
The worker publishes events on a Redis channel; the API process keeps the latest
MAX_EVENTS in memory, fed by a background subscriber thread.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import redis

from helpdesk.config import REDIS_URL
from helpdesk.models import AssignmentStatus, RoutingOutcome

logger = logging.getLogger(__name__)

ACTIVITY_CHANNEL = "helpdesk_activity"
MAX_EVENTS = 200


@dataclass
class ActivityEvent:
    ts: float = field(default_factory=time.time)
    type: str = ""
    data: dict[str, Any] = field(default_factory=dict)


_events: list[ActivityEvent] = []
_lock = threading.Lock()


def emit(event_type: str, data: dict[str, Any] | None = None) -> None:
    """Append an event to this process's activity log."""
    with _lock:
        _events.append(ActivityEvent(type=event_type, data=data or {}))
        del _events[:-MAX_EVENTS]


def get_recent(limit: int = 100) -> list[dict]:
    """Most recent events, newest last."""
    with _lock:
        return [{"ts": e.ts, "type": e.type, "data": e.data} for e in _events[-limit:]]


def outcome_event(outcome: RoutingOutcome) -> tuple[str, dict[str, Any]]:
    """Activity event describing a routing outcome."""
    if outcome.status == AssignmentStatus.QUEUED:
        return "ticket_queued", {"ticket_id": outcome.ticket_id, "warnings": outcome.warnings}
    return "ticket_assigned", {
        "ticket_id": outcome.ticket_id,
        "agent_id": outcome.agent.agent_id if outcome.agent else None,
        "routed_via": outcome.routed_via.value if outcome.routed_via else None,
        "warnings": outcome.warnings,
    }


def _redis_subscriber_thread() -> None:
    try:
        r = redis.from_url(REDIS_URL, decode_responses=True)
        pubsub = r.pubsub()
        pubsub.subscribe(ACTIVITY_CHANNEL)
        logger.info("Activity subscriber listening on channel %s", ACTIVITY_CHANNEL)
        for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                payload = json.loads(message["data"])
                emit(payload.get("type", "unknown"), payload.get("data", {}))
            except (ValueError, AttributeError) as e:
                logger.warning("Activity message parse error: %s", e)
    except redis.RedisError as e:
        logger.warning("Activity Redis subscriber stopped: %s", e)


def start_redis_subscriber() -> None:
    threading.Thread(target=_redis_subscriber_thread, daemon=True).start()


def publish_event(event_type: str, data: dict[str, Any]) -> None:
    """Publish an event for the API's activity log (call from the worker). Best-effort."""
    try:
        r = redis.from_url(REDIS_URL, decode_responses=True)
        r.publish(ACTIVITY_CHANNEL, json.dumps({"type": event_type, "data": data}))
    except redis.RedisError as e:
        logger.warning("Activity publish failed: %s", e)
