"""Wiring of the router and its collaborators for the API and the worker."""

from helpdesk.broker import RedisBacklog
from helpdesk.config import AGENT_REGISTRY_BACKEND
from helpdesk.notifications import Notifier
from helpdesk.queue_store import InMemoryBacklog
from helpdesk.services.agent_registry import build_registry
from helpdesk.services.expertise_graph import build_expert_lookup
from helpdesk.services.orchestrator import TicketRouter
from helpdesk.services.reminders import ReminderScheduler

_router = None


def build_router() -> TicketRouter:
    backlog = InMemoryBacklog() if AGENT_REGISTRY_BACKEND == "memory" else RedisBacklog()
    return TicketRouter(
        registry=build_registry(),
        expert_lookup=build_expert_lookup(),
        notifier=Notifier(),
        reminders=ReminderScheduler(),
        backlog=backlog,
    )


def get_router() -> TicketRouter:
    """Process-wide router (FastAPI dependency)."""
    global _router
    if _router is None:
        _router = build_router()
    return _router
