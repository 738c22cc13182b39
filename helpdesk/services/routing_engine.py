"""
Routing engine: pick the single best agent for a ticket.

Ordered decision cascade over the eligible agents (available and under capacity):
  1. Escalation: urgent or negative-sentiment tickets prefer senior agents. When no
     senior is free the full eligible set is used instead, so escalation never
     empties the candidate list.
  2. Skill match: score = number of agent skills that substring-match the ticket
     category in either direction, case-insensitively ("Technical" matches
     "Technical Support" and vice versa). Only candidates with score > 0 survive.
  3. Ranking: (score desc, current_load asc) among skill matches, or current_load asc
     among all candidates when nothing matched. Ties keep the input order.

Pure and synchronous: works on a snapshot and never mutates the agents it is given.
"""

import logging
from typing import Optional

import numpy as np

from helpdesk.models import Agent, TicketDescriptor

logger = logging.getLogger(__name__)


def skill_match_score(category: str, skills: list[str]) -> int:
    """Count skills that contain the category or are contained in it (case-insensitive)."""
    cat = category.strip().lower()
    if not cat:
        return 0
    score = 0
    for skill in skills:
        s = skill.strip().lower()
        if s and (s in cat or cat in s):
            score += 1
    return score


def eligible_agents(agents: list[Agent]) -> list[Agent]:
    """Agents that are available and below max_load, in input order."""
    return [a for a in agents if a.is_eligible]


def _escalation_candidates(ticket: TicketDescriptor, eligible: list[Agent]) -> list[Agent]:
    if not ticket.needs_escalation:
        return eligible
    seniors = [a for a in eligible if a.senior_level]
    if seniors:
        logger.debug("Escalated ticket: %d senior candidate(s).", len(seniors))
        return seniors
    logger.debug("Escalated ticket but no senior agent free; using all %d eligible.", len(eligible))
    return eligible


def rank_agents(ticket: TicketDescriptor, agents: list[Agent]) -> list[Agent]:
    """
    Return the winning tier's candidates in rank order (best first).
    Empty when there is no category or no eligible agent.
    """
    if not isinstance(ticket, TicketDescriptor):
        raise TypeError(f"expected TicketDescriptor, got {type(ticket).__name__}")
    if not ticket.category.strip():
        return []
    eligible = eligible_agents(agents)
    if not eligible:
        return []

    candidates = _escalation_candidates(ticket, eligible)
    scores = np.array([skill_match_score(ticket.category, a.skills) for a in candidates], dtype=np.int64)
    loads = np.array([a.current_load for a in candidates], dtype=np.int64)

    matched = np.flatnonzero(scores > 0)
    if matched.size:
        # lexsort: last key is primary; stable, so equal keys keep input order
        order = matched[np.lexsort((loads[matched], -scores[matched]))]
    else:
        logger.debug("No skill match for category %r; balancing by load.", ticket.category)
        order = np.argsort(loads, kind="stable")
    return [candidates[int(i)] for i in order]


def select_agent(ticket: TicketDescriptor, agents: list[Agent]) -> Optional[Agent]:
    """
    Select the best eligible agent for the ticket, or None when nobody has capacity.
    None is a normal outcome (the caller queues the ticket), never an exception.
    """
    ranked = rank_agents(ticket, agents)
    if not ranked:
        return None
    return ranked[0]
