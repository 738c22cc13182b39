"""Domain exceptions for agent routing. Expected outcomes (no capacity, no skill match) are not errors."""


class RoutingError(Exception):
    """Base class for routing and assignment errors."""


class AgentNotFound(RoutingError):
    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} not found")
        self.agent_id = agent_id


class CapacityExceeded(RoutingError):
    """The agent was unavailable or full when the assignment was committed."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} is unavailable or at capacity")
        self.agent_id = agent_id


class AssignmentNotFound(RoutingError):
    def __init__(self, ticket_id: str):
        super().__init__(f"Ticket {ticket_id} has no assignment")
        self.ticket_id = ticket_id
