"""
Redis-backed backlog of tickets that could not be assigned (no agent had capacity).

Sorted set of ticket ids scored by urgency; the ticket payload lives in its own key.
Draining pops with ZPOPMAX (atomic), so concurrent drainers never take the same ticket.
"""

from typing import Optional

import redis

from helpdesk.config import REDIS_URL
from helpdesk.models import QueuedTicket, Sentiment

UNASSIGNED_ZSET = "tickets:unassigned"
UNASSIGNED_PAYLOAD_PREFIX = "tickets:unassigned:"

_redis_client = None


def _redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def backlog_score(queued: QueuedTicket) -> float:
    """Higher = served first: priority, then negative sentiment, then oldest first."""
    band = queued.descriptor.priority.rank * 2
    if queued.descriptor.sentiment == Sentiment.NEGATIVE:
        band += 1
    return band * 1e10 - queued.queued_at


class RedisBacklog:
    def __init__(self, client=None):
        self._client = client

    @property
    def r(self):
        if self._client is None:
            self._client = _redis()
        return self._client

    def add_unassigned(self, queued: QueuedTicket) -> None:
        ticket_id = queued.ticket.ticket_id
        pipe = self.r.pipeline()
        pipe.set(f"{UNASSIGNED_PAYLOAD_PREFIX}{ticket_id}", queued.model_dump_json())
        pipe.zadd(UNASSIGNED_ZSET, {ticket_id: backlog_score(queued)})
        pipe.execute()

    def pop_next(self) -> Optional[QueuedTicket]:
        """Atomically pop the most urgent waiting ticket. None if empty."""
        result = self.r.zpopmax(UNASSIGNED_ZSET, count=1)
        if not result:
            return None
        ticket_id, _ = result[0]
        key = f"{UNASSIGNED_PAYLOAD_PREFIX}{ticket_id}"
        pipe = self.r.pipeline()
        pipe.get(key)
        pipe.delete(key)
        raw, _ = pipe.execute()
        if not raw:
            return None
        return QueuedTicket.model_validate_json(raw)

    def peek_next(self) -> Optional[QueuedTicket]:
        members = self.r.zrange(UNASSIGNED_ZSET, -1, -1)
        if not members:
            return None
        raw = self.r.get(f"{UNASSIGNED_PAYLOAD_PREFIX}{members[0]}")
        return QueuedTicket.model_validate_json(raw) if raw else None

    def remove(self, ticket_id: str) -> bool:
        pipe = self.r.pipeline()
        pipe.zrem(UNASSIGNED_ZSET, ticket_id)
        pipe.delete(f"{UNASSIGNED_PAYLOAD_PREFIX}{ticket_id}")
        removed, _ = pipe.execute()
        return bool(removed)

    def size(self) -> int:
        return self.r.zcard(UNASSIGNED_ZSET)

    def list_snapshot(self) -> list[QueuedTicket]:
        """All waiting tickets, most urgent first."""
        ids = self.r.zrange(UNASSIGNED_ZSET, 0, -1, desc=True)
        if not ids:
            return []
        pipe = self.r.pipeline()
        for tid in ids:
            pipe.get(f"{UNASSIGNED_PAYLOAD_PREFIX}{tid}")
        return [QueuedTicket.model_validate_json(raw) for raw in pipe.execute() if raw]

    def clear_all(self) -> None:
        ids = self.r.zrange(UNASSIGNED_ZSET, 0, -1)
        pipe = self.r.pipeline()
        for tid in ids:
            pipe.delete(f"{UNASSIGNED_PAYLOAD_PREFIX}{tid}")
        pipe.delete(UNASSIGNED_ZSET)
        pipe.execute()
