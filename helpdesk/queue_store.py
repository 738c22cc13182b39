"""In-memory backlog of unassigned tickets (heapq), same interface as broker.RedisBacklog."""

import heapq
import threading
from typing import Optional

from helpdesk.broker import backlog_score
from helpdesk.models import QueuedTicket


class InMemoryBacklog:
    def __init__(self):
        # Heap entries: (-score, insertion_order, ticket_id); heapq is a min-heap.
        self._heap: list[tuple] = []
        self._tickets: dict[str, QueuedTicket] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def add_unassigned(self, queued: QueuedTicket) -> None:
        ticket_id = queued.ticket.ticket_id
        with self._lock:
            self._counter += 1
            self._tickets[ticket_id] = queued
            heapq.heappush(self._heap, (-backlog_score(queued), self._counter, ticket_id))

    def _discard_stale(self) -> None:
        # Entries for removed or re-added tickets stay in the heap until they surface.
        while self._heap:
            neg_score, _order, ticket_id = self._heap[0]
            queued = self._tickets.get(ticket_id)
            if queued is not None and -neg_score == backlog_score(queued):
                return
            heapq.heappop(self._heap)

    def pop_next(self) -> Optional[QueuedTicket]:
        with self._lock:
            self._discard_stale()
            if not self._heap:
                return None
            _neg, _order, ticket_id = heapq.heappop(self._heap)
            return self._tickets.pop(ticket_id)

    def peek_next(self) -> Optional[QueuedTicket]:
        with self._lock:
            self._discard_stale()
            if not self._heap:
                return None
            return self._tickets[self._heap[0][2]]

    def remove(self, ticket_id: str) -> bool:
        with self._lock:
            return self._tickets.pop(ticket_id, None) is not None

    def size(self) -> int:
        with self._lock:
            return len(self._tickets)

    def list_snapshot(self) -> list[QueuedTicket]:
        with self._lock:
            return sorted(self._tickets.values(), key=backlog_score, reverse=True)

    def clear_all(self) -> None:
        with self._lock:
            self._heap = []
            self._tickets = {}
            self._counter = 0
