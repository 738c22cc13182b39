"""
ARQ background worker: route submitted tickets and dispatch due follow-up reminders.
"""

import asyncio
import logging
from dataclasses import replace

from arq import cron, run_worker
from arq.connections import RedisSettings

from helpdesk.activity import outcome_event, publish_event
from helpdesk.config import REDIS_CONN_TIMEOUT, REDIS_URL
from helpdesk.deps import build_router
from helpdesk.models import IncomingTicket, NotificationType
from helpdesk.sentiment import detect_sentiment
from helpdesk.services.agent_registry import DEFAULT_AGENTS

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:
    router = build_router()
    router.registry.seed_agents(DEFAULT_AGENTS)
    ctx["router"] = router


async def shutdown(ctx: dict) -> None:
    router = ctx.get("router")
    if router is not None and router.expert_lookup is not None:
        await router.expert_lookup.close()


async def process_ticket(ctx: dict, payload: dict) -> dict:
    """ARQ job: detect sentiment when missing, route and assign, publish the outcome."""
    ticket_id = payload.get("ticket_id", "?")
    logger.info("Routing ticket %s...", ticket_id)
    try:
        ticket = IncomingTicket.model_validate(payload)
        sentiment = ticket.sentiment
        if sentiment is None:
            sentiment = await asyncio.to_thread(detect_sentiment, f"{ticket.title} {ticket.description}")
        outcome = await ctx["router"].assign(ticket, ticket.descriptor(sentiment))
    except Exception as e:
        logger.exception("Failed to route ticket %s: %s", ticket_id, e)
        raise
    publish_event(*outcome_event(outcome))
    logger.info(
        "Ticket %s %s (agent=%s, via=%s, warnings=%d).",
        ticket.ticket_id,
        outcome.status.value,
        outcome.agent.agent_id if outcome.agent else "-",
        outcome.routed_via.value if outcome.routed_via else "-",
        len(outcome.warnings),
    )
    return outcome.model_dump(mode="json")


async def dispatch_due_reminders(ctx: dict) -> int:
    """Cron: turn due follow-up reminders into agent notifications."""
    router = ctx["router"]
    if router.reminders is None or router.notifier is None:
        return 0
    sent = 0
    for reminder in router.reminders.pop_due():
        edge = router.registry.get_assignment(reminder.ticket_id)
        if edge is None:
            logger.debug("Reminder %s skipped: ticket %s no longer assigned.", reminder.event_id, reminder.ticket_id)
            continue
        await router.notifier.notify(edge.agent_id, reminder.summary, NotificationType.WARNING, reminder.ticket_id)
        sent += 1
    if sent:
        logger.info("Dispatched %d follow-up reminder(s).", sent)
    return sent


class WorkerSettings:
    functions = [process_ticket]
    cron_jobs = [cron(dispatch_due_reminders, run_at_startup=True)]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = replace(
        RedisSettings.from_dsn(REDIS_URL),
        conn_timeout=REDIS_CONN_TIMEOUT,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Worker starting (Redis: %s).", REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL)
    run_worker(WorkerSettings)
