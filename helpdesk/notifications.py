"""
User notifications (agent, submitter, admins) stored in Redis lists, newest first.
Admin notifications are also POSTed to the Slack/Discord WEBHOOK_URL when set.
Delivery is best-effort: callers treat failures as warnings, never as routing errors.
"""

import asyncio
import json
import logging
import ssl
import urllib.request
from typing import Any, Optional
from uuid import uuid4

import redis

from helpdesk.config import NOTIFICATIONS_MAX_PER_USER, REDIS_URL, WEBHOOK_URL
from helpdesk.models import Notification, NotificationType

logger = logging.getLogger(__name__)

NOTIFICATIONS_PREFIX = "notifications:"
ADMINS_CHANNEL = "admins"

_redis_client = None


def _redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def _build_webhook_payload(message: str, ticket_id: Optional[str]) -> dict[str, Any]:
    """Slack reads `text`/`blocks`, Discord reads `content`."""
    text = f"*Ticket:* `{ticket_id}`\n{message}" if ticket_id else message
    return {
        "text": message,
        "content": message,
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
    }


def _do_post(url: str, payload: dict[str, Any]) -> None:
    """Synchronous POST (run in thread)."""
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    ctx = ssl.create_default_context()
    urllib.request.urlopen(req, timeout=5, context=ctx)


class Notifier:
    def __init__(self, client=None, webhook_url: str = WEBHOOK_URL, max_per_user: int = NOTIFICATIONS_MAX_PER_USER):
        self._client = client
        self._webhook_url = webhook_url
        self._max_per_user = max_per_user

    @property
    def r(self):
        if self._client is None:
            self._client = _redis()
        return self._client

    def _store(self, notification: Notification) -> None:
        key = f"{NOTIFICATIONS_PREFIX}{notification.user_id}"
        pipe = self.r.pipeline()
        pipe.lpush(key, notification.model_dump_json())
        pipe.ltrim(key, 0, self._max_per_user - 1)
        pipe.execute()

    async def notify(
        self,
        user_id: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        ticket_id: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            notification_id=uuid4().hex,
            user_id=user_id,
            message=message,
            type=type,
            ticket_id=ticket_id,
        )
        await asyncio.to_thread(self._store, notification)
        logger.debug("Notified %s: %s", user_id, message)
        return notification

    async def notify_admins(
        self,
        message: str,
        type: NotificationType = NotificationType.INFO,
        ticket_id: Optional[str] = None,
    ) -> Notification:
        notification = await self.notify(ADMINS_CHANNEL, message, type, ticket_id)
        if self._webhook_url:
            try:
                await asyncio.to_thread(_do_post, self._webhook_url, _build_webhook_payload(message, ticket_id))
            except Exception as e:
                logger.warning("Admin webhook delivery failed: %s", e)
        return notification

    def list_for_user(self, user_id: str, limit: int = 50, unread_only: bool = False) -> list[Notification]:
        raw = self.r.lrange(f"{NOTIFICATIONS_PREFIX}{user_id}", 0, self._max_per_user - 1)
        items = [Notification.model_validate_json(x) for x in raw]
        if unread_only:
            items = [n for n in items if not n.read]
        return items[:limit]

    def mark_all_read(self, user_id: str) -> int:
        """Mark every notification of the user as read. Returns how many changed."""
        key = f"{NOTIFICATIONS_PREFIX}{user_id}"

        def _mark(pipe):
            items = [Notification.model_validate_json(x) for x in pipe.lrange(key, 0, -1)]
            changed = sum(1 for n in items if not n.read)
            if not changed:
                return 0
            pipe.multi()
            pipe.delete(key)
            pipe.rpush(key, *[n.model_copy(update={"read": True}).model_dump_json() for n in items])
            return changed

        return self.r.transaction(_mark, key, value_from_callable=True)
