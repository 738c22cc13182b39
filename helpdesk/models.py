"""Data models for the helpdesk routing service."""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(str, Enum):
    """Ticket priority as chosen by the submitter."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3, Priority.URGENT: 4}


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# --- Agents ---


class Agent(BaseModel):
    """A support agent with keyword skills and a ticket capacity."""

    agent_id: str = Field(..., min_length=1, description="Unique agent identifier")
    email: str = Field(default="", description="Contact email (also the key used by the expertise graph)")
    display_name: str = Field(default="", description="Display name")
    skills: list[str] = Field(default_factory=list, description="Keyword skill tags, e.g. 'Billing'")
    current_load: int = Field(default=0, ge=0, description="Open tickets currently assigned")
    max_load: int = Field(default=5, ge=1, description="Capacity ceiling")
    is_available: bool = Field(default=True, description="Administratively toggled availability")
    senior_level: bool = Field(default=False, description="Receives escalated tickets first")

    @property
    def is_eligible(self) -> bool:
        """Available and under capacity."""
        return self.is_available and self.current_load < self.max_load


class Assignment(BaseModel):
    """Directed edge agent -> ticket. At most one per ticket; reassignment overwrites it."""

    agent_id: str
    ticket_id: str
    assigned_at: datetime = Field(default_factory=_utcnow)


# --- Tickets ---


class TicketDescriptor(BaseModel):
    """The part of a ticket that routing looks at."""

    category: str = Field(default="", description="Free text, matched case-insensitively against skills")
    priority: Priority = Priority.MEDIUM
    sentiment: Optional[Sentiment] = None

    @property
    def needs_escalation(self) -> bool:
        return self.sentiment == Sentiment.NEGATIVE or self.priority == Priority.URGENT


class IncomingTicket(BaseModel):
    """Payload for a submitted support ticket."""

    ticket_id: str = Field(..., min_length=1, description="Unique ticket identifier")
    title: str = Field(..., description="Ticket title")
    description: str = Field(default="", description="Ticket body")
    category: str = Field(default="", description="e.g. 'Technical Support', 'Billing'")
    priority: Priority = Priority.MEDIUM
    sentiment: Optional[Sentiment] = Field(None, description="Detected from the text when omitted")
    submitter_id: Optional[str] = Field(None, description="User who submitted the ticket")

    def descriptor(self, sentiment: Optional[Sentiment] = None) -> TicketDescriptor:
        return TicketDescriptor(
            category=self.category,
            priority=self.priority,
            sentiment=sentiment if sentiment is not None else self.sentiment,
        )


class QueuedTicket(BaseModel):
    """A ticket waiting in the backlog because no agent had capacity."""

    ticket: IncomingTicket
    descriptor: TicketDescriptor
    queued_at: float = Field(default_factory=time.time)


class TicketAccepted(BaseModel):
    """Response for 202 Accepted: ticket accepted for async routing."""

    ticket_id: str
    job_id: str = Field(..., description="Unique job id for this routing task")
    message: str = Field(default="Accepted for routing")


# --- Expertise graph lookup ---


class Expert(BaseModel):
    name: str = ""
    email: str


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class ExpertLookup(BaseModel):
    """Tagged result of a topic-expertise lookup: found(expert) | not_found | error(reason)."""

    status: LookupStatus
    expert: Optional[Expert] = None
    reason: Optional[str] = None

    @classmethod
    def found(cls, expert: Expert) -> "ExpertLookup":
        return cls(status=LookupStatus.FOUND, expert=expert)

    @classmethod
    def not_found(cls, reason: Optional[str] = None) -> "ExpertLookup":
        return cls(status=LookupStatus.NOT_FOUND, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "ExpertLookup":
        return cls(status=LookupStatus.ERROR, reason=reason)


# --- Routing output ---


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    QUEUED = "queued"


class RoutedVia(str, Enum):
    EXPERTISE_GRAPH = "expertise_graph"
    ROUTING_ENGINE = "routing_engine"


class RoutingOutcome(BaseModel):
    """Result of routing one ticket. Warnings list auxiliary steps that failed."""

    ticket_id: str
    status: AssignmentStatus
    agent: Optional[Agent] = None
    assignment: Optional[Assignment] = None
    routed_via: Optional[RoutedVia] = None
    reminder_event_id: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


# --- Collaborator records ---


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    notification_id: str
    user_id: str
    message: str
    type: NotificationType = NotificationType.INFO
    ticket_id: Optional[str] = None
    read: bool = False
    created_at: float = Field(default_factory=time.time)


class Reminder(BaseModel):
    """A follow-up calendar event for the agent who owns a ticket."""

    event_id: str
    ticket_id: str
    summary: str
    description: str = ""
    agent_email: str
    start: datetime
    end: datetime
