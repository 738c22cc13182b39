"""
Follow-up reminders for assigned tickets.

A reminder is a calendar-style event (summary, attendee, start/end) stored in Redis
and indexed by due time; the worker's cron job pops due reminders and notifies the
agent. Scheduling is best-effort from the router's point of view.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import redis

from helpdesk.config import REDIS_URL, REMINDER_DURATION_MINUTES
from helpdesk.models import Reminder

logger = logging.getLogger(__name__)

REMINDER_PREFIX = "reminder:"
REMINDERS_DUE_ZSET = "reminders:due"
TICKET_REMINDER_PREFIX = "ticket_reminder:"

_redis_client = None


def _redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def build_reminder(ticket_id: str, title: str, agent_email: str, when: datetime) -> Reminder:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return Reminder(
        event_id=f"reminder-{uuid4().hex}",
        ticket_id=ticket_id,
        summary=f"Follow up: {title}",
        description=f"Ticket ID: {ticket_id}\n\nReminder to follow up on this support ticket.",
        agent_email=agent_email,
        start=when,
        end=when + timedelta(minutes=REMINDER_DURATION_MINUTES),
    )


class ReminderScheduler:
    def __init__(self, client=None):
        self._client = client

    @property
    def r(self):
        if self._client is None:
            self._client = _redis()
        return self._client

    def schedule_reminder(self, ticket_id: str, title: str, agent_email: str, when: datetime) -> Optional[str]:
        """Store a reminder for the ticket (replacing any earlier one). Returns the event id."""
        if not agent_email:
            logger.warning("No email for the agent on ticket %s; reminder not scheduled.", ticket_id)
            return None
        self.cancel_for_ticket(ticket_id)
        reminder = build_reminder(ticket_id, title, agent_email, when)
        pipe = self.r.pipeline()
        pipe.set(f"{REMINDER_PREFIX}{reminder.event_id}", reminder.model_dump_json())
        pipe.zadd(REMINDERS_DUE_ZSET, {reminder.event_id: reminder.start.timestamp()})
        pipe.set(f"{TICKET_REMINDER_PREFIX}{ticket_id}", reminder.event_id)
        pipe.execute()
        logger.info("Reminder %s scheduled for ticket %s at %s.", reminder.event_id, ticket_id, reminder.start.isoformat())
        return reminder.event_id

    def get_reminder(self, event_id: str) -> Optional[Reminder]:
        raw = self.r.get(f"{REMINDER_PREFIX}{event_id}")
        return Reminder.model_validate_json(raw) if raw else None

    def cancel_for_ticket(self, ticket_id: str) -> bool:
        event_id = self.r.get(f"{TICKET_REMINDER_PREFIX}{ticket_id}")
        if not event_id:
            return False
        pipe = self.r.pipeline()
        pipe.delete(f"{REMINDER_PREFIX}{event_id}")
        pipe.zrem(REMINDERS_DUE_ZSET, event_id)
        pipe.delete(f"{TICKET_REMINDER_PREFIX}{ticket_id}")
        pipe.execute()
        return True

    def retarget_for_ticket(self, ticket_id: str, agent_email: str) -> Optional[str]:
        """Point the ticket's pending reminder at a new agent, keeping its due time."""
        if not agent_email:
            self.cancel_for_ticket(ticket_id)
            return None
        event_id = self.r.get(f"{TICKET_REMINDER_PREFIX}{ticket_id}")
        if not event_id:
            return None
        reminder = self.get_reminder(event_id)
        if reminder is None:
            return None
        reminder.agent_email = agent_email
        # xx: a reminder popped by the cron meanwhile is not recreated
        if not self.r.set(f"{REMINDER_PREFIX}{event_id}", reminder.model_dump_json(), xx=True):
            return None
        logger.info("Reminder %s for ticket %s now goes to %s.", event_id, ticket_id, agent_email)
        return event_id

    def pop_due(self, now: Optional[datetime] = None, limit: int = 100) -> list[Reminder]:
        """Remove and return reminders whose start time has passed."""
        ts = (now or datetime.now(timezone.utc)).timestamp()
        due = []
        for event_id in self.r.zrangebyscore(REMINDERS_DUE_ZSET, "-inf", ts, start=0, num=limit):
            # ZREM decides ownership when several workers poll at once
            if not self.r.zrem(REMINDERS_DUE_ZSET, event_id):
                continue
            key = f"{REMINDER_PREFIX}{event_id}"
            raw = self.r.get(key)
            self.r.delete(key)
            if not raw:
                continue
            reminder = Reminder.model_validate_json(raw)
            ticket_key = f"{TICKET_REMINDER_PREFIX}{reminder.ticket_id}"
            if self.r.get(ticket_key) == event_id:
                self.r.delete(ticket_key)
            due.append(reminder)
        return due
