"""REST API for the helpdesk: ticket submission, agent roster, assignments, notifications."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from helpdesk.activity import emit as activity_emit, get_recent as activity_get_recent, start_redis_subscriber
from helpdesk.activity import outcome_event
from helpdesk.config import REDIS_URL
from helpdesk.deps import get_router
from helpdesk.errors import AgentNotFound, AssignmentNotFound, CapacityExceeded
from helpdesk.models import (
    Agent,
    Assignment,
    IncomingTicket,
    Notification,
    QueuedTicket,
    RoutingOutcome,
    TicketAccepted,
)
from helpdesk.sentiment import detect_sentiment
from helpdesk.services.agent_registry import DEFAULT_AGENTS
from helpdesk.services.orchestrator import TicketRouter

logger = logging.getLogger(__name__)

_arq_pool = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _arq_pool
    _arq_pool = None
    try:
        from arq import create_pool
        from arq.connections import RedisSettings
        _arq_pool = await create_pool(RedisSettings.from_dsn(REDIS_URL))
    except (OSError, redis.RedisError) as e:
        logger.warning("Redis/ARQ pool unavailable: %s. POST /tickets will return 503.", e)
    start_redis_subscriber()
    router = get_router()
    try:
        router.registry.seed_agents(DEFAULT_AGENTS)
    except redis.RedisError as e:
        logger.warning("Could not seed default agents (Redis down?): %s", e)
    try:
        yield
    finally:
        if router.expert_lookup is not None:
            await router.expert_lookup.close()
        if _arq_pool is not None:
            await _arq_pool.close()
            _arq_pool = None


app = FastAPI(
    title="Helpdesk Routing Service",
    description="Ticket submission and skill/load based agent assignment.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(AgentNotFound)
@app.exception_handler(AssignmentNotFound)
async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(CapacityExceeded)
async def _capacity_exceeded(request: Request, exc: CapacityExceeded) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


class ReassignRequest(BaseModel):
    agent_id: str = Field(..., min_length=1)


class AvailabilityUpdate(BaseModel):
    is_available: bool


# --- Tickets ---


@app.post("/tickets", status_code=202, response_model=TicketAccepted)
async def submit_ticket(payload: IncomingTicket) -> TicketAccepted:
    """Accept a ticket and return 202 immediately; a background worker routes it."""
    pool = _arq_pool
    if pool is None:
        raise HTTPException(status_code=503, detail="Worker pool not ready")
    job = await pool.enqueue_job("process_ticket", payload.model_dump(mode="json"))
    job_id = job.job_id if job else str(uuid4())
    activity_emit("ticket_accepted", {"ticket_id": payload.ticket_id, "job_id": job_id})
    return TicketAccepted(ticket_id=payload.ticket_id, job_id=job_id)


@app.post("/tickets/assign", response_model=RoutingOutcome)
async def assign_ticket(payload: IncomingTicket, router: TicketRouter = Depends(get_router)) -> RoutingOutcome:
    """Route a ticket inline. status=queued means no agent had capacity (ticket waits in the backlog)."""
    sentiment = payload.sentiment
    if sentiment is None:
        sentiment = await asyncio.to_thread(detect_sentiment, f"{payload.title} {payload.description}")
    outcome = await router.assign(payload, payload.descriptor(sentiment))
    activity_emit(*outcome_event(outcome))
    return outcome


@app.get("/tickets/{ticket_id}/assignment", response_model=Assignment)
def get_ticket_assignment(ticket_id: str, router: TicketRouter = Depends(get_router)) -> Assignment:
    edge = router.registry.get_assignment(ticket_id)
    if edge is None:
        raise AssignmentNotFound(ticket_id)
    return edge


@app.post("/tickets/{ticket_id}/resolve", response_model=Optional[Assignment])
async def resolve_ticket(ticket_id: str, router: TicketRouter = Depends(get_router)) -> Optional[Assignment]:
    """Free the agent's capacity (load - 1) and hand it to the oldest urgent backlog ticket."""
    edge = await router.resolve(ticket_id)
    activity_emit("ticket_resolved", {"ticket_id": ticket_id, "agent_id": edge.agent_id if edge else None})
    return edge


@app.post("/tickets/{ticket_id}/reassign", response_model=Assignment)
async def reassign_ticket(
    ticket_id: str,
    payload: ReassignRequest,
    router: TicketRouter = Depends(get_router),
) -> Assignment:
    edge = await router.reassign(ticket_id, payload.agent_id)
    activity_emit("ticket_reassigned", {"ticket_id": ticket_id, "agent_id": edge.agent_id})
    return edge


@app.get("/assignments", response_model=list[Assignment])
def list_assignments(limit: int = 100, router: TicketRouter = Depends(get_router)) -> list[Assignment]:
    if limit < 1 or limit > 1000:
        limit = 100
    return router.registry.list_assignments(limit=limit)


# --- Backlog ---


@app.get("/backlog", response_model=list[QueuedTicket])
def list_backlog(router: TicketRouter = Depends(get_router)) -> list[QueuedTicket]:
    """Tickets awaiting an agent, most urgent first."""
    if router.backlog is None:
        return []
    return router.backlog.list_snapshot()


@app.post("/backlog/drain", response_model=list[RoutingOutcome])
async def drain_backlog(limit: Optional[int] = None, router: TicketRouter = Depends(get_router)) -> list[RoutingOutcome]:
    outcomes = await router.drain_backlog(limit=limit)
    for outcome in outcomes:
        activity_emit(*outcome_event(outcome))
    return outcomes


# --- Agents ---


@app.post("/agents", response_model=Agent)
def register_agent(agent: Agent, router: TicketRouter = Depends(get_router)) -> Agent:
    """Register or update an agent (skills, capacity, seniority)."""
    router.registry.register_agent(agent)
    return router.registry.get_agent(agent.agent_id) or agent


@app.get("/agents", response_model=list[Agent])
def list_agents(available_only: bool = False, router: TicketRouter = Depends(get_router)) -> list[Agent]:
    """All agents, or only those that are available with spare capacity."""
    agents = router.registry.list_agents()
    if available_only:
        agents = [a for a in agents if a.is_eligible]
    return agents


@app.get("/agents/{agent_id}", response_model=Agent)
def get_agent(agent_id: str, router: TicketRouter = Depends(get_router)) -> Agent:
    agent = router.registry.get_agent(agent_id)
    if agent is None:
        raise AgentNotFound(agent_id)
    return agent


@app.patch("/agents/{agent_id}/availability", response_model=Agent)
async def set_agent_availability(
    agent_id: str,
    payload: AvailabilityUpdate,
    router: TicketRouter = Depends(get_router),
) -> Agent:
    return await router.set_availability(agent_id, payload.is_available)


@app.get("/agents/{agent_id}/tickets")
def get_agent_tickets(agent_id: str, router: TicketRouter = Depends(get_router)) -> dict:
    if router.registry.get_agent(agent_id) is None:
        raise AgentNotFound(agent_id)
    return {"agent_id": agent_id, "ticket_ids": router.registry.tickets_for_agent(agent_id)}


@app.post("/agents/loads/reconcile")
def reconcile_loads(router: TicketRouter = Depends(get_router)) -> dict:
    """Set each agent's current_load to the number of tickets assigned to it."""
    return {"status": "ok", "agents_updated": router.registry.reconcile_loads()}


# --- Notifications & activity ---


@app.get("/notifications/{user_id}", response_model=list[Notification])
def list_notifications(
    user_id: str,
    limit: int = 50,
    unread_only: bool = False,
    router: TicketRouter = Depends(get_router),
) -> list[Notification]:
    if router.notifier is None:
        return []
    return router.notifier.list_for_user(user_id, limit=limit, unread_only=unread_only)


@app.post("/notifications/{user_id}/read")
def mark_notifications_read(user_id: str, router: TicketRouter = Depends(get_router)) -> dict:
    if router.notifier is None:
        return {"marked_read": 0}
    return {"marked_read": router.notifier.mark_all_read(user_id)}


@app.get("/activity")
def get_activity(limit: int = 100) -> dict:
    if limit < 1 or limit > 200:
        limit = 100
    return {"events": activity_get_recent(limit=limit)}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
