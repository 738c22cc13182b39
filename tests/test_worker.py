"""
ARQ job functions called directly with a hand-built ctx (no Redis, no worker process).
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

import helpdesk.worker as worker
from helpdesk.models import NotificationType
from helpdesk.queue_store import InMemoryBacklog
from helpdesk.services.agent_registry import InMemoryAgentRegistry
from helpdesk.services.orchestrator import TicketRouter
from helpdesk.services.reminders import build_reminder
from tests.helpers import FakeNotifier


class DueReminders:
    def __init__(self, reminders):
        self.reminders = reminders

    def pop_due(self):
        due, self.reminders = self.reminders, []
        return due


@pytest.fixture
def published(monkeypatch):
    events = []
    monkeypatch.setattr(worker, "publish_event", lambda event_type, data: events.append((event_type, data)))
    return events


@pytest.fixture
def ctx(billing_and_tech_pool):
    router = TicketRouter(
        InMemoryAgentRegistry(billing_and_tech_pool),
        notifier=FakeNotifier(),
        backlog=InMemoryBacklog(),
    )
    return {"router": router}


def test_process_ticket_assigns_and_publishes(ctx, published):
    payload = {"ticket_id": "T-1", "title": "Refund", "description": "Charged twice", "category": "Billing"}
    result = asyncio.run(worker.process_ticket(ctx, payload))
    assert result["status"] == "assigned"
    assert result["agent"]["agent_id"] == "agent-1"
    assert published == [("ticket_assigned", {
        "ticket_id": "T-1",
        "agent_id": "agent-1",
        "routed_via": "routing_engine",
        "warnings": [],
    })]


def test_process_ticket_detects_negative_sentiment(ctx, published):
    payload = {"ticket_id": "T-2", "title": "Refund", "description": "This is unacceptable", "category": "Billing"}
    result = asyncio.run(worker.process_ticket(ctx, payload))
    assert result["agent"]["agent_id"] == "agent-2"


def test_process_ticket_rejects_bad_payload(ctx, published):
    with pytest.raises(ValueError):
        asyncio.run(worker.process_ticket(ctx, {"title": "no id"}))
    assert published == []


def test_due_reminders_notify_current_assignee(ctx):
    router = ctx["router"]
    router.registry.commit_assignment("agent-2", "T-1", datetime.now(timezone.utc))
    when = datetime.now(timezone.utc) - timedelta(minutes=1)
    router.reminders = DueReminders([
        build_reminder("T-1", "Refund", "agent-1@example.com", when),
        build_reminder("T-gone", "Closed", "agent-1@example.com", when),
    ])
    sent = asyncio.run(worker.dispatch_due_reminders(ctx))
    assert sent == 1
    # the ticket moved to agent-2 after the reminder was scheduled
    assert router.notifier.sent == [("agent-2", "Follow up: Refund")]


def test_due_reminders_without_scheduler(ctx):
    assert asyncio.run(worker.dispatch_due_reminders(ctx)) == 0


def test_notification_type_for_reminders_is_warning(ctx, monkeypatch):
    router = ctx["router"]
    router.registry.commit_assignment("agent-1", "T-1", datetime.now(timezone.utc))
    router.reminders = DueReminders([
        build_reminder("T-1", "Refund", "agent-1@example.com", datetime.now(timezone.utc)),
    ])
    types = []

    async def notify(user_id, message, type=None, ticket_id=None):
        types.append(type)

    monkeypatch.setattr(router.notifier, "notify", notify)
    asyncio.run(worker.dispatch_due_reminders(ctx))
    assert types == [NotificationType.WARNING]
