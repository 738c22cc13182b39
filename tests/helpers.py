"""Shared test builders and fake collaborators."""

from helpdesk.errors import RoutingError
from helpdesk.models import Agent, ExpertLookup
from helpdesk.services.agent_registry import InMemoryAgentRegistry


def make_agent(agent_id, skills=(), load=0, max_load=5, available=True, senior=False, email=None):
    return Agent(
        agent_id=agent_id,
        email=email if email is not None else f"{agent_id}@example.com",
        display_name=agent_id.title(),
        skills=list(skills),
        current_load=load,
        max_load=max_load,
        is_available=available,
        senior_level=senior,
    )


class FakeExpertLookup:
    def __init__(self, result=None, exc=None):
        self.result = result if result is not None else ExpertLookup.not_found()
        self.exc = exc
        self.topics = []
        self.recorded = []

    async def lookup(self, topic):
        self.topics.append(topic)
        if self.exc is not None:
            raise self.exc
        return self.result

    async def record_assignment(self, agent_email, ticket_id):
        self.recorded.append((agent_email, ticket_id))


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.admin_messages = []

    async def notify(self, user_id, message, type=None, ticket_id=None):
        if self.fail:
            raise RuntimeError("notification store down")
        self.sent.append((user_id, message))

    async def notify_admins(self, message, type=None, ticket_id=None):
        if self.fail:
            raise RuntimeError("notification store down")
        self.admin_messages.append(message)


class FakeReminders:
    def __init__(self, fail=False):
        self.fail = fail
        self.scheduled = []
        self.cancelled = []
        self.retargeted = []

    def schedule_reminder(self, ticket_id, title, agent_email, when):
        if self.fail:
            raise ConnectionError("calendar unreachable")
        self.scheduled.append((ticket_id, title, agent_email, when))
        return f"evt-{ticket_id}"

    def cancel_for_ticket(self, ticket_id):
        self.cancelled.append(ticket_id)
        return True

    def retarget_for_ticket(self, ticket_id, agent_email):
        self.retargeted.append((ticket_id, agent_email))
        return f"evt-{ticket_id}"


class FlakyCommitRegistry(InMemoryAgentRegistry):
    """Commits raise RoutingError (unsettled transaction, lost connection) while `failing` is set."""

    def __init__(self, agents):
        super().__init__(agents)
        self.failing = False

    def commit_assignment(self, agent_id, ticket_id, assigned_at):
        if self.failing:
            raise RoutingError(f"Registry update on agent:{agent_id} did not settle")
        return super().commit_assignment(agent_id, ticket_id, assigned_at)


class RacingRegistry(InMemoryAgentRegistry):
    """Another router fills the chosen agent between our read and our first commit."""

    def __init__(self, agents):
        super().__init__(agents)
        self.raced = False

    def commit_assignment(self, agent_id, ticket_id, assigned_at):
        if not self.raced:
            self.raced = True
            agent = self.get_agent(agent_id)
            self.adjust_load(agent_id, agent.max_load - agent.current_load)
        return super().commit_assignment(agent_id, ticket_id, assigned_at)
