"""
Agent registry: the roster of agents with skills, load and availability, plus the
ticket -> agent assignment edges.

Two interchangeable backends with the same methods:
  - RedisAgentRegistry: shared across API and worker processes (AGENT:{id}, ticket
    assignee edges). Every load change is an optimistic WATCH/MULTI transaction, so
    concurrent commits against one agent serialize and capacity is re-checked at
    write time.
  - InMemoryAgentRegistry: single process, mutex-guarded.

Callers receive copies; the only way to change current_load is through
commit_assignment / release_assignment / adjust_load (see LoadUpdater).
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

import redis

from helpdesk.config import AGENT_REGISTRY_BACKEND, REDIS_URL, REGISTRY_CAS_RETRIES
from helpdesk.errors import AgentNotFound, CapacityExceeded, RoutingError
from helpdesk.models import Agent, Assignment

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent:"
AGENTS_ALL_SET = "agents:all"
TICKET_ASSIGNEE_PREFIX = "ticket_assignee:"
AGENT_TICKETS_PREFIX = "agent_tickets:"

_redis_client = None


def _redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def _agent_key(agent_id: str) -> str:
    return f"{AGENT_PREFIX}{agent_id}"


def _edge_key(ticket_id: str) -> str:
    return f"{TICKET_ASSIGNEE_PREFIX}{ticket_id}"


def _agent_tickets_key(agent_id: str) -> str:
    return f"{AGENT_TICKETS_PREFIX}{agent_id}"


# Default roster seeded at startup (existing agents are left unchanged).
DEFAULT_AGENTS = [
    Agent(
        agent_id="agent-1",
        email="sarah.tech@synapsolve.com",
        display_name="Sarah Chen",
        skills=["Technical Support", "Bug Report", "API Issues"],
        current_load=0,
        max_load=8,
        is_available=True,
        senior_level=True,
    ),
    Agent(
        agent_id="agent-2",
        email="mike.billing@synapsolve.com",
        display_name="Mike Rodriguez",
        skills=["Billing", "Account Issues", "Payments"],
        current_load=0,
        max_load=6,
        is_available=True,
        senior_level=False,
    ),
    Agent(
        agent_id="agent-3",
        email="emma.support@synapsolve.com",
        display_name="Emma Johnson",
        skills=["General Inquiry", "Feature Request", "Account Issues"],
        current_load=0,
        max_load=5,
        is_available=True,
        senior_level=False,
    ),
    Agent(
        agent_id="agent-4",
        email="david.senior@synapsolve.com",
        display_name="David Kim",
        skills=["Technical Support", "Bug Report", "Feature Request", "Escalation"],
        current_load=0,
        max_load=10,
        is_available=True,
        senior_level=True,
    ),
]


class RedisAgentRegistry:
    """Redis-backed registry. Pass a client to share a connection (or for tests)."""

    def __init__(self, client=None, cas_retries: int = REGISTRY_CAS_RETRIES):
        self._client = client
        self._cas_retries = max(1, cas_retries)

    @property
    def r(self):
        if self._client is None:
            self._client = _redis()
        return self._client

    def _transaction(self, keys: list[str], fn: Callable):
        """
        Run fn(pipe) under WATCH on keys. fn reads in immediate mode and returns
        (result, has_writes); if it queued writes after pipe.multi() they are executed.
        Retries when a watched key changed underneath.
        """
        for attempt in range(1, self._cas_retries + 1):
            with self.r.pipeline() as pipe:
                try:
                    pipe.watch(*keys)
                    result, has_writes = fn(pipe)
                    if has_writes:
                        pipe.execute()
                    return result
                except redis.WatchError:
                    logger.debug("Registry transaction on %s contended (attempt %d).", keys, attempt)
                    continue
        raise RoutingError(f"Registry update on {keys} did not settle after {self._cas_retries} attempts")

    # --- roster ---

    def register_agent(self, agent: Agent) -> None:
        """Upsert an agent."""
        pipe = self.r.pipeline()
        pipe.set(_agent_key(agent.agent_id), agent.model_dump_json())
        pipe.sadd(AGENTS_ALL_SET, agent.agent_id)
        pipe.execute()
        logger.info("Agent %s registered (skills: %s, load %d/%d, senior=%s).",
                    agent.agent_id, ", ".join(agent.skills) or "-", agent.current_load,
                    agent.max_load, agent.senior_level)

    def seed_agents(self, agents: list[Agent]) -> int:
        """Register agents that don't exist yet. Preserves load and state of existing ones."""
        seeded = 0
        for agent in agents:
            if self.r.setnx(_agent_key(agent.agent_id), agent.model_dump_json()):
                self.r.sadd(AGENTS_ALL_SET, agent.agent_id)
                seeded += 1
        if seeded:
            logger.info("Seeded %d agents (existing agents left unchanged).", seeded)
        return seeded

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        raw = self.r.get(_agent_key(agent_id))
        if not raw:
            return None
        return Agent.model_validate_json(raw)

    def list_agents(self) -> list[Agent]:
        """All agents, ordered by id."""
        ids = sorted(self.r.smembers(AGENTS_ALL_SET))
        if not ids:
            return []
        pipe = self.r.pipeline()
        for aid in ids:
            pipe.get(_agent_key(aid))
        agents = []
        for aid, raw in zip(ids, pipe.execute()):
            if not raw:
                logger.warning("Agent %s is indexed but has no record; skipping.", aid)
                continue
            agents.append(Agent.model_validate_json(raw))
        return agents

    def find_agent_by_email(self, email: str) -> Optional[Agent]:
        wanted = email.strip().lower()
        for agent in self.list_agents():
            if agent.email.lower() == wanted:
                return agent
        return None

    def set_availability(self, agent_id: str, available: bool) -> Agent:
        key = _agent_key(agent_id)

        def _update(pipe):
            raw = pipe.get(key)
            if not raw:
                raise AgentNotFound(agent_id)
            agent = Agent.model_validate_json(raw)
            agent.is_available = available
            pipe.multi()
            pipe.set(key, agent.model_dump_json())
            return agent, True

        agent = self._transaction([key], _update)
        logger.info("Agent %s is now %s.", agent_id, "available" if available else "unavailable")
        return agent

    def remove_agent(self, agent_id: str) -> bool:
        pipe = self.r.pipeline()
        pipe.delete(_agent_key(agent_id))
        pipe.srem(AGENTS_ALL_SET, agent_id)
        deleted, _ = pipe.execute()
        return bool(deleted)

    # --- load and assignment edges ---

    def commit_assignment(self, agent_id: str, ticket_id: str, assigned_at: datetime) -> Assignment:
        """
        Atomically: re-check the agent is eligible, increment its load, write the edge.
        Same ticket already on this agent -> returns the existing edge unchanged.
        Ticket on another agent -> that agent's load is decremented (edge overwritten).
        """
        agent_key = _agent_key(agent_id)
        edge_key = _edge_key(ticket_id)

        def _commit(pipe):
            raw_edge = pipe.get(edge_key)
            previous = Assignment.model_validate_json(raw_edge) if raw_edge else None
            if previous is not None and previous.agent_id == agent_id:
                return previous, False
            raw = pipe.get(agent_key)
            if not raw:
                raise AgentNotFound(agent_id)
            agent = Agent.model_validate_json(raw)
            if not agent.is_eligible:
                raise CapacityExceeded(agent_id)

            prev_agent = None
            if previous is not None:
                prev_key = _agent_key(previous.agent_id)
                pipe.watch(prev_key)
                raw_prev = pipe.get(prev_key)
                if raw_prev:
                    prev_agent = Agent.model_validate_json(raw_prev)
                    prev_agent.current_load = max(0, prev_agent.current_load - 1)

            agent.current_load += 1
            edge = Assignment(agent_id=agent_id, ticket_id=ticket_id, assigned_at=assigned_at)
            pipe.multi()
            pipe.set(agent_key, agent.model_dump_json())
            pipe.set(edge_key, edge.model_dump_json())
            pipe.sadd(_agent_tickets_key(agent_id), ticket_id)
            if previous is not None:
                pipe.srem(_agent_tickets_key(previous.agent_id), ticket_id)
                if prev_agent is not None:
                    pipe.set(_agent_key(prev_agent.agent_id), prev_agent.model_dump_json())
            return edge, True

        return self._transaction([agent_key, edge_key], _commit)

    def release_assignment(self, ticket_id: str) -> Optional[Assignment]:
        """Remove the ticket's edge and decrement its agent's load (never below 0)."""
        edge_key = _edge_key(ticket_id)

        def _release(pipe):
            raw_edge = pipe.get(edge_key)
            if not raw_edge:
                return None, False
            edge = Assignment.model_validate_json(raw_edge)
            agent_key = _agent_key(edge.agent_id)
            pipe.watch(agent_key)
            raw = pipe.get(agent_key)
            pipe.multi()
            pipe.delete(edge_key)
            pipe.srem(_agent_tickets_key(edge.agent_id), ticket_id)
            if raw:
                agent = Agent.model_validate_json(raw)
                agent.current_load = max(0, agent.current_load - 1)
                pipe.set(agent_key, agent.model_dump_json())
            return edge, True

        return self._transaction([edge_key], _release)

    def adjust_load(self, agent_id: str, delta: int) -> Agent:
        """Apply a load delta, clamped at 0."""
        key = _agent_key(agent_id)

        def _adjust(pipe):
            raw = pipe.get(key)
            if not raw:
                raise AgentNotFound(agent_id)
            agent = Agent.model_validate_json(raw)
            agent.current_load = max(0, agent.current_load + delta)
            pipe.multi()
            pipe.set(key, agent.model_dump_json())
            return agent, True

        return self._transaction([key], _adjust)

    def get_assignment(self, ticket_id: str) -> Optional[Assignment]:
        raw = self.r.get(_edge_key(ticket_id))
        if not raw:
            return None
        return Assignment.model_validate_json(raw)

    def list_assignments(self, limit: int = 100) -> list[Assignment]:
        out = []
        for key in self.r.scan_iter(match=f"{TICKET_ASSIGNEE_PREFIX}*", count=limit * 2):
            raw = self.r.get(key)
            if raw:
                out.append(Assignment.model_validate_json(raw))
            if len(out) >= limit:
                break
        return out

    def tickets_for_agent(self, agent_id: str) -> list[str]:
        return sorted(self.r.smembers(_agent_tickets_key(agent_id)))

    def reconcile_loads(self) -> int:
        """Set each agent's current_load to the number of tickets assigned to it. Returns agents changed."""
        updated = 0
        for agent in self.list_agents():
            key = _agent_key(agent.agent_id)
            tickets_key = _agent_tickets_key(agent.agent_id)

            def _reconcile(pipe, key=key, tickets_key=tickets_key):
                raw = pipe.get(key)
                if not raw:
                    return False, False
                current = Agent.model_validate_json(raw)
                count = pipe.scard(tickets_key)
                if current.current_load == count:
                    return False, False
                current.current_load = count
                pipe.multi()
                pipe.set(key, current.model_dump_json())
                return True, True

            if self._transaction([key, tickets_key], _reconcile):
                updated += 1
        if updated:
            logger.info("Reconciled load for %d agent(s).", updated)
        return updated


class InMemoryAgentRegistry:
    """Single-process registry; all reads and writes go through one lock."""

    def __init__(self, agents: Optional[list[Agent]] = None):
        self._lock = threading.Lock()
        self._agents: dict[str, Agent] = {}
        self._edges: dict[str, Assignment] = {}
        for agent in agents or []:
            self._agents[agent.agent_id] = agent.model_copy(deep=True)

    def register_agent(self, agent: Agent) -> None:
        with self._lock:
            self._agents[agent.agent_id] = agent.model_copy(deep=True)
        logger.info("Agent %s registered (in memory).", agent.agent_id)

    def seed_agents(self, agents: list[Agent]) -> int:
        seeded = 0
        with self._lock:
            for agent in agents:
                if agent.agent_id not in self._agents:
                    self._agents[agent.agent_id] = agent.model_copy(deep=True)
                    seeded += 1
        return seeded

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.model_copy(deep=True) if agent else None

    def list_agents(self) -> list[Agent]:
        """All agents in registration order."""
        with self._lock:
            return [a.model_copy(deep=True) for a in self._agents.values()]

    def find_agent_by_email(self, email: str) -> Optional[Agent]:
        wanted = email.strip().lower()
        with self._lock:
            for agent in self._agents.values():
                if agent.email.lower() == wanted:
                    return agent.model_copy(deep=True)
        return None

    def set_availability(self, agent_id: str, available: bool) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            agent.is_available = available
            return agent.model_copy(deep=True)

    def remove_agent(self, agent_id: str) -> bool:
        with self._lock:
            return self._agents.pop(agent_id, None) is not None

    def _require(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def commit_assignment(self, agent_id: str, ticket_id: str, assigned_at: datetime) -> Assignment:
        with self._lock:
            previous = self._edges.get(ticket_id)
            if previous is not None and previous.agent_id == agent_id:
                return previous.model_copy()
            agent = self._require(agent_id)
            if not agent.is_eligible:
                raise CapacityExceeded(agent_id)
            if previous is not None and previous.agent_id in self._agents:
                prev_agent = self._agents[previous.agent_id]
                prev_agent.current_load = max(0, prev_agent.current_load - 1)
            agent.current_load += 1
            edge = Assignment(agent_id=agent_id, ticket_id=ticket_id, assigned_at=assigned_at)
            self._edges[ticket_id] = edge
            return edge.model_copy()

    def release_assignment(self, ticket_id: str) -> Optional[Assignment]:
        with self._lock:
            edge = self._edges.pop(ticket_id, None)
            if edge is None:
                return None
            agent = self._agents.get(edge.agent_id)
            if agent is not None:
                agent.current_load = max(0, agent.current_load - 1)
            return edge.model_copy()

    def adjust_load(self, agent_id: str, delta: int) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            agent.current_load = max(0, agent.current_load + delta)
            return agent.model_copy(deep=True)

    def get_assignment(self, ticket_id: str) -> Optional[Assignment]:
        with self._lock:
            edge = self._edges.get(ticket_id)
            return edge.model_copy() if edge else None

    def list_assignments(self, limit: int = 100) -> list[Assignment]:
        with self._lock:
            return [e.model_copy() for e in list(self._edges.values())[:limit]]

    def tickets_for_agent(self, agent_id: str) -> list[str]:
        with self._lock:
            return sorted(tid for tid, e in self._edges.items() if e.agent_id == agent_id)

    def reconcile_loads(self) -> int:
        updated = 0
        with self._lock:
            counts: dict[str, int] = {}
            for edge in self._edges.values():
                counts[edge.agent_id] = counts.get(edge.agent_id, 0) + 1
            for agent in self._agents.values():
                count = counts.get(agent.agent_id, 0)
                if agent.current_load != count:
                    agent.current_load = count
                    updated += 1
        return updated


def build_registry():
    """Registry for the configured backend (AGENT_REGISTRY_BACKEND)."""
    if AGENT_REGISTRY_BACKEND == "memory":
        logger.info("Using in-memory agent registry (single process).")
        return InMemoryAgentRegistry()
    return RedisAgentRegistry()
