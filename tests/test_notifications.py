"""
Notifier without Redis: webhook payload shape and best-effort webhook delivery.
"""

import asyncio

import helpdesk.notifications as notifications
from helpdesk.models import NotificationType
from helpdesk.notifications import ADMINS_CHANNEL, Notifier, _build_webhook_payload


class RecordingPipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def lpush(self, key, value):
        self.ops.append(("lpush", key, value))

    def ltrim(self, key, start, end):
        self.ops.append(("ltrim", key, start, end))

    def execute(self):
        self.store.extend(self.ops)


class RecordingClient:
    def __init__(self):
        self.ops = []

    def pipeline(self):
        return RecordingPipeline(self.ops)


def test_webhook_payload_serves_slack_and_discord():
    payload = _build_webhook_payload("Ticket #T-1 is queued", "T-1")
    assert payload["text"] == payload["content"] == "Ticket #T-1 is queued"
    block = payload["blocks"][0]
    assert block["type"] == "section"
    assert "`T-1`" in block["text"]["text"]


def test_webhook_payload_without_ticket():
    payload = _build_webhook_payload("Daily summary", None)
    assert payload["blocks"][0]["text"]["text"] == "Daily summary"


def test_notify_stores_and_trims():
    client = RecordingClient()
    notifier = Notifier(client, webhook_url="", max_per_user=5)
    n = asyncio.run(notifier.notify("agent-1", "hello", NotificationType.SUCCESS, "T-1"))
    assert n.user_id == "agent-1" and n.type == NotificationType.SUCCESS and not n.read
    assert [op[0] for op in client.ops] == ["lpush", "ltrim"]
    assert client.ops[0][1] == "notifications:agent-1"
    assert client.ops[1][2:] == (0, 4)


def test_admin_webhook_failure_is_not_raised(monkeypatch):
    posted = []

    def failing_post(url, payload):
        posted.append(url)
        raise OSError("webhook unreachable")

    monkeypatch.setattr(notifications, "_do_post", failing_post)
    client = RecordingClient()
    notifier = Notifier(client, webhook_url="https://hooks.example.com/x")
    n = asyncio.run(notifier.notify_admins("Ticket #T-2 is queued", NotificationType.WARNING, "T-2"))
    assert n.user_id == ADMINS_CHANNEL
    assert posted == ["https://hooks.example.com/x"]
    assert client.ops[0][1] == f"notifications:{ADMINS_CHANNEL}"


def test_no_webhook_configured_skips_post(monkeypatch):
    posted = []
    monkeypatch.setattr(notifications, "_do_post", lambda url, payload: posted.append(url))
    asyncio.run(Notifier(RecordingClient(), webhook_url="").notify_admins("hi"))
    assert posted == []
