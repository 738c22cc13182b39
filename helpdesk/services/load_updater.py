"""
Load updater: the single path through which agent load changes.

Every increment goes through the registry's atomic commit, which re-checks
eligibility at write time; a ticket that lost the race gets CapacityExceeded
and is re-routed by the caller against a fresh roster.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from helpdesk.errors import AgentNotFound, AssignmentNotFound
from helpdesk.models import Agent, Assignment

logger = logging.getLogger(__name__)


class LoadUpdater:
    def __init__(self, registry):
        self.registry = registry

    def apply_assignment(self, agent_id: str, ticket_id: str) -> Assignment:
        """Increment the agent's load by one and record the ticket edge. Raises CapacityExceeded."""
        edge = self.registry.commit_assignment(agent_id, ticket_id, datetime.now(timezone.utc))
        logger.info("Assigned ticket %s to agent %s.", ticket_id, agent_id)
        return edge

    def release_assignment(self, ticket_id: str) -> Optional[Assignment]:
        """Mirror of apply_assignment (resolution or deletion). Load never drops below 0."""
        edge = self.registry.release_assignment(ticket_id)
        if edge is None:
            logger.debug("Ticket %s had no assignment to release.", ticket_id)
        else:
            logger.info("Released ticket %s from agent %s.", ticket_id, edge.agent_id)
        return edge

    def reassign(self, ticket_id: str, agent_id: str) -> Assignment:
        """Move an assigned ticket to another agent; one unit of load moves with it."""
        if self.registry.get_assignment(ticket_id) is None:
            raise AssignmentNotFound(ticket_id)
        if self.registry.get_agent(agent_id) is None:
            raise AgentNotFound(agent_id)
        return self.apply_assignment(agent_id, ticket_id)

    def adjust(self, agent_id: str, delta: int) -> Agent:
        agent = self.registry.adjust_load(agent_id, delta)
        logger.info("Agent %s load adjusted by %+d to %d/%d.", agent_id, delta, agent.current_load, agent.max_load)
        return agent
