"""
Ticket router: expertise-graph lookup first, local routing engine as the fallback,
then commit the assignment and run the follow-up side effects.

Order per ticket is strict: route -> commit (load + edge) -> graph mirror ->
reminder -> notifications. A commit rejected because the agent filled up
concurrently is retried against a fresh roster. Failures after the commit are
logged and reported as warnings on the outcome; they never undo the assignment.
"""

import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from helpdesk.config import REMINDER_DELAY_HOURS, ROUTING_MAX_ATTEMPTS
from helpdesk.errors import AgentNotFound, CapacityExceeded
from helpdesk.models import (
    Agent,
    Assignment,
    AssignmentStatus,
    Expert,
    ExpertLookup,
    IncomingTicket,
    LookupStatus,
    NotificationType,
    QueuedTicket,
    RoutedVia,
    RoutingOutcome,
    TicketDescriptor,
)
from helpdesk.services.load_updater import LoadUpdater
from helpdesk.services.routing_engine import eligible_agents, select_agent

logger = logging.getLogger(__name__)


class TicketRouter:
    """
    Collaborators (all optional except the registry):
      expert_lookup: async lookup(topic) -> ExpertLookup, async record_assignment(email, ticket_id)
      notifier:      async notify(user_id, message, type, ticket_id), async notify_admins(message, type, ticket_id)
      reminders:     schedule_reminder(ticket_id, title, agent_email, when) -> event_id, cancel_for_ticket(ticket_id)
      backlog:       add_unassigned(queued), pop_next(), remove(ticket_id)
    """

    def __init__(
        self,
        registry,
        expert_lookup=None,
        notifier=None,
        reminders=None,
        backlog=None,
        max_attempts: int = ROUTING_MAX_ATTEMPTS,
        reminder_delay: timedelta = timedelta(hours=REMINDER_DELAY_HOURS),
    ):
        self.registry = registry
        self.load_updater = LoadUpdater(registry)
        self.expert_lookup = expert_lookup
        self.notifier = notifier
        self.reminders = reminders
        self.backlog = backlog
        self.max_attempts = max(1, max_attempts)
        self.reminder_delay = reminder_delay

    # --- routing ---

    async def _lookup_expert(self, topic: str) -> ExpertLookup:
        if self.expert_lookup is None:
            return ExpertLookup.not_found("expertise graph not configured")
        try:
            return await self.expert_lookup.lookup(topic)
        except Exception as e:
            return ExpertLookup.error(f"{type(e).__name__}: {e}")

    def _resolve_expert(self, expert: Expert) -> Optional[Agent]:
        """Translate the graph's expert into a registry agent; None if unknown or not eligible."""
        agent = self.registry.find_agent_by_email(expert.email)
        if agent is None:
            logger.warning("Graph expert %s is not a registered agent; ignoring it.", expert.email)
            return None
        if not agent.is_eligible:
            logger.info("Graph expert %s is unavailable or full (%d/%d); ignoring it.",
                        agent.agent_id, agent.current_load, agent.max_load)
            return None
        return agent

    async def _route(self, ticket: TicketDescriptor) -> tuple[Optional[Agent], Optional[RoutedVia]]:
        result = await self._lookup_expert(ticket.category)
        if result.status == LookupStatus.FOUND:
            agent = self._resolve_expert(result.expert)
            if agent is not None:
                return agent, RoutedVia.EXPERTISE_GRAPH
        elif result.status == LookupStatus.ERROR:
            logger.warning("Expertise lookup failed for %r (%s); using the routing engine.",
                           ticket.category, result.reason)
        else:
            logger.debug("No graph expert for %r (%s).", ticket.category, result.reason)

        agent = select_agent(ticket, self.registry.list_agents())
        return agent, (RoutedVia.ROUTING_ENGINE if agent is not None else None)

    async def route_ticket(self, ticket: TicketDescriptor) -> Optional[Agent]:
        """Best agent for the ticket (graph expert if usable, else the routing engine), or None."""
        agent, _ = await self._route(ticket)
        return agent

    # --- assignment ---

    async def _best_effort(self, outcome: RoutingOutcome, step: str, fn, *args):
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.warning("%s failed for ticket %s: %s", step, outcome.ticket_id, e)
            outcome.warnings.append(f"{step} failed: {e}")
            return None

    async def assign(self, ticket: IncomingTicket, descriptor: Optional[TicketDescriptor] = None) -> RoutingOutcome:
        """
        Route and assign a submitted ticket. No capacity -> status "queued" (ticket goes to
        the backlog); that is a normal outcome, not an error.
        """
        return await self._assign(ticket, descriptor or ticket.descriptor(), queued_at=None)

    async def _assign(
        self,
        ticket: IncomingTicket,
        descriptor: TicketDescriptor,
        queued_at: Optional[float],
    ) -> RoutingOutcome:
        existing = self.registry.get_assignment(ticket.ticket_id)
        if existing is not None:
            logger.info("Ticket %s is already assigned to %s; not routing again.", ticket.ticket_id, existing.agent_id)
            return RoutingOutcome(
                ticket_id=ticket.ticket_id,
                status=AssignmentStatus.ASSIGNED,
                agent=self.registry.get_agent(existing.agent_id),
                assignment=existing,
                warnings=["ticket was already assigned"],
            )

        outcome = RoutingOutcome(ticket_id=ticket.ticket_id, status=AssignmentStatus.QUEUED)
        edge: Optional[Assignment] = None
        agent: Optional[Agent] = None
        via: Optional[RoutedVia] = None
        for attempt in range(1, self.max_attempts + 1):
            agent, via = await self._route(descriptor)
            if agent is None:
                break
            try:
                edge = self.load_updater.apply_assignment(agent.agent_id, ticket.ticket_id)
                break
            except (CapacityExceeded, AgentNotFound) as e:
                logger.warning("Commit for ticket %s rejected (attempt %d/%d): %s; re-routing.",
                               ticket.ticket_id, attempt, self.max_attempts, e)
                agent = None

        if edge is None:
            await self._queue(ticket, descriptor, outcome, queued_at)
            return outcome

        agent = self.registry.get_agent(edge.agent_id) or agent
        outcome.status = AssignmentStatus.ASSIGNED
        outcome.agent = agent
        outcome.assignment = edge
        outcome.routed_via = via
        if self.backlog is not None and queued_at is None:
            await self._best_effort(outcome, "backlog cleanup", self.backlog.remove, ticket.ticket_id)
        await self._after_assignment(ticket, agent, outcome)
        return outcome

    async def _queue(
        self,
        ticket: IncomingTicket,
        descriptor: TicketDescriptor,
        outcome: RoutingOutcome,
        queued_at: Optional[float],
    ) -> None:
        if queued_at is not None:
            # Popped from the backlog; drain_backlog puts it back.
            return
        if not descriptor.category.strip():
            reason = "it has no category and needs manual assignment"
        else:
            reason = "no agent has capacity"
        logger.warning("Ticket %s queued: %s.", ticket.ticket_id, reason)
        if self.backlog is not None:
            queued = QueuedTicket(ticket=ticket, descriptor=descriptor)
            await self._best_effort(outcome, "backlog", self.backlog.add_unassigned, queued)
        if self.notifier is None:
            return
        await self._best_effort(
            outcome, "admin notification", self.notifier.notify_admins,
            f"Ticket #{ticket.ticket_id} is queued: {reason}.",
            NotificationType.WARNING, ticket.ticket_id,
        )
        if ticket.submitter_id:
            await self._best_effort(
                outcome, "submitter notification", self.notifier.notify,
                ticket.submitter_id,
                f"Your ticket #{ticket.ticket_id} was received and is awaiting an agent.",
                NotificationType.INFO, ticket.ticket_id,
            )

    async def _after_assignment(self, ticket: IncomingTicket, agent: Agent, outcome: RoutingOutcome) -> None:
        record = getattr(self.expert_lookup, "record_assignment", None)
        if record is not None and agent.email:
            await self._best_effort(outcome, "graph sync", record, agent.email, ticket.ticket_id)

        if self.reminders is not None:
            when = datetime.now(timezone.utc) + self.reminder_delay
            outcome.reminder_event_id = await self._best_effort(
                outcome, "reminder", self.reminders.schedule_reminder,
                ticket.ticket_id, ticket.title, agent.email, when,
            )

        if self.notifier is None:
            return
        await self._best_effort(
            outcome, "agent notification", self.notifier.notify,
            agent.agent_id, f"Ticket #{ticket.ticket_id} has been assigned to you: {ticket.title}",
            NotificationType.INFO, ticket.ticket_id,
        )
        if ticket.submitter_id:
            await self._best_effort(
                outcome, "submitter notification", self.notifier.notify,
                ticket.submitter_id,
                f"Your ticket #{ticket.ticket_id} was assigned to {agent.display_name or agent.agent_id}.",
                NotificationType.SUCCESS, ticket.ticket_id,
            )

    # --- lifecycle ---

    async def resolve(self, ticket_id: str) -> Optional[Assignment]:
        """Release the ticket's agent (load - 1), then hand freed capacity to the backlog."""
        edge = self.load_updater.release_assignment(ticket_id)
        outcome = RoutingOutcome(ticket_id=ticket_id, status=AssignmentStatus.QUEUED)
        if edge is None:
            if self.backlog is not None:
                await self._best_effort(outcome, "backlog cleanup", self.backlog.remove, ticket_id)
            return None
        if self.reminders is not None:
            await self._best_effort(outcome, "reminder cancel", self.reminders.cancel_for_ticket, ticket_id)
        if self.notifier is not None:
            await self._best_effort(
                outcome, "agent notification", self.notifier.notify,
                edge.agent_id, f"Ticket #{ticket_id} marked as resolved.",
                NotificationType.SUCCESS, ticket_id,
            )
        await self._drain_after_release()
        return edge

    async def reassign(self, ticket_id: str, agent_id: str) -> Assignment:
        """Explicitly move an assigned ticket to another agent. Raises CapacityExceeded if that agent is full."""
        edge = self.load_updater.reassign(ticket_id, agent_id)
        outcome = RoutingOutcome(ticket_id=ticket_id, status=AssignmentStatus.ASSIGNED)
        agent = self.registry.get_agent(agent_id)
        record = getattr(self.expert_lookup, "record_assignment", None)
        if record is not None and agent is not None and agent.email:
            await self._best_effort(outcome, "graph sync", record, agent.email, ticket_id)
        if self.reminders is not None and agent is not None:
            await self._best_effort(
                outcome, "reminder", self.reminders.retarget_for_ticket, ticket_id, agent.email,
            )
        if self.notifier is not None:
            await self._best_effort(
                outcome, "agent notification", self.notifier.notify,
                agent_id, f"Ticket #{ticket_id} has been assigned to you.",
                NotificationType.INFO, ticket_id,
            )
            await self._best_effort(
                outcome, "admin notification", self.notifier.notify_admins,
                f"Ticket #{ticket_id} was reassigned to {agent_id}.",
                NotificationType.INFO, ticket_id,
            )
        return edge

    async def set_availability(self, agent_id: str, available: bool) -> Agent:
        agent = self.registry.set_availability(agent_id, available)
        if available:
            await self._drain_after_release()
        return self.registry.get_agent(agent_id) or agent

    async def _drain_after_release(self) -> None:
        # The release or availability change already happened; a drain failure must not undo its response.
        try:
            await self.drain_backlog()
        except Exception as e:
            logger.warning("Backlog drain failed: %s; queued tickets stay queued.", e)

    async def drain_backlog(self, limit: Optional[int] = None) -> list[RoutingOutcome]:
        """
        Assign queued tickets, most urgent first, while agents have capacity.

        A ticket that still finds nobody is held aside and the drain moves on to the
        next one; it stops once no agent is eligible at all. Held tickets go back
        into the backlog with their original queue time, also when routing raises.
        """
        if self.backlog is None:
            return []
        assigned: list[RoutingOutcome] = []
        held: list[QueuedTicket] = []
        try:
            while limit is None or len(assigned) < limit:
                queued = self.backlog.pop_next()
                if queued is None:
                    break
                held.append(queued)
                outcome = await self._assign(queued.ticket, queued.descriptor, queued_at=queued.queued_at)
                if outcome.status == AssignmentStatus.ASSIGNED:
                    held.pop()
                    assigned.append(outcome)
                    continue
                if not eligible_agents(self.registry.list_agents()):
                    break
                logger.info("Ticket %s has no matching agent yet; skipping it in this drain.",
                            queued.ticket.ticket_id)
        finally:
            for queued in held:
                self.backlog.add_unassigned(queued)
        if assigned:
            logger.info("Drained %d ticket(s) from the backlog.", len(assigned))
        return assigned
