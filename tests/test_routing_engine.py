"""
Unit tests for the routing engine (pure, no Redis required).
Run: pytest tests/test_routing_engine.py -v
"""

import random

import pytest
from pydantic import ValidationError

from helpdesk.models import Priority, Sentiment, TicketDescriptor
from helpdesk.services.routing_engine import (
    eligible_agents,
    rank_agents,
    select_agent,
    skill_match_score,
)
from tests.helpers import make_agent


def ticket(category="Billing", priority=Priority.MEDIUM, sentiment=Sentiment.NEUTRAL):
    return TicketDescriptor(category=category, priority=priority, sentiment=sentiment)


class TestSkillMatchScore:
    def test_exact_match_case_insensitive(self):
        assert skill_match_score("billing", ["Billing"]) == 1

    def test_category_contains_skill(self):
        assert skill_match_score("Billing and Payments", ["Billing", "Payments", "Legal"]) == 2

    def test_skill_contains_category(self):
        assert skill_match_score("Technical", ["Technical Support"]) == 1

    def test_no_overlap(self):
        assert skill_match_score("Billing", ["Technical Support", "Bug Report"]) == 0

    def test_blank_category_and_blank_skills_never_match(self):
        assert skill_match_score("   ", ["Billing"]) == 0
        assert skill_match_score("Billing", ["", "  "]) == 0


class TestScenarios:
    def test_skill_match_wins_without_escalation(self, billing_and_tech_pool):
        chosen = select_agent(ticket("Billing", Priority.HIGH, Sentiment.NEUTRAL), billing_and_tech_pool)
        assert chosen.agent_id == "agent-1"

    def test_escalation_to_only_senior_despite_no_skill_match(self, billing_and_tech_pool):
        chosen = select_agent(ticket("Billing", Priority.URGENT, Sentiment.NEGATIVE), billing_and_tech_pool)
        assert chosen.agent_id == "agent-2"

    def test_urgent_alone_triggers_escalation(self, billing_and_tech_pool):
        chosen = select_agent(ticket("Billing", Priority.URGENT, Sentiment.NEUTRAL), billing_and_tech_pool)
        assert chosen.agent_id == "agent-2"

    def test_negative_alone_triggers_escalation(self, billing_and_tech_pool):
        chosen = select_agent(ticket("Billing", Priority.LOW, Sentiment.NEGATIVE), billing_and_tech_pool)
        assert chosen.agent_id == "agent-2"

    def test_all_agents_at_capacity_returns_none(self):
        agents = [make_agent("a", ["Billing"], load=5, max_load=5), make_agent("b", ["Billing"], load=3, max_load=3)]
        assert select_agent(ticket("Billing"), agents) is None

    def test_both_categories_route_to_the_only_matching_agent(self):
        agents = [
            make_agent("generalist", ["General Inquiry"], load=0),
            make_agent("tech", ["Technical Support", "Bug Report", "API Issues"], load=4, max_load=8),
        ]
        for category in ("API Issues", "Technical Support"):
            assert select_agent(ticket(category), agents).agent_id == "tech"

    def test_abbreviated_category_matches_longer_skill(self):
        agents = [make_agent("gen", ["General Inquiry"]), make_agent("tech", ["Technical Support"], load=3)]
        assert select_agent(ticket("Technical"), agents).agent_id == "tech"


class TestNoneOutcomes:
    def test_empty_pool(self):
        assert select_agent(ticket(), []) is None

    def test_all_unavailable(self):
        agents = [make_agent("a", ["Billing"], available=False), make_agent("b", available=False)]
        assert select_agent(ticket(), agents) is None

    @pytest.mark.parametrize("category", ["", "   "])
    def test_no_category(self, category, billing_and_tech_pool):
        assert select_agent(ticket(category), billing_and_tech_pool) is None


class TestEscalation:
    def test_no_senior_free_falls_through_to_skill_match(self):
        agents = [
            make_agent("senior-full", ["Technical Support"], load=5, max_load=5, senior=True),
            make_agent("billing", ["Billing"], load=4),
            make_agent("other", ["Legal"], load=0),
        ]
        chosen = select_agent(ticket("Billing", Priority.URGENT), agents)
        assert chosen.agent_id == "billing"

    def test_unavailable_senior_is_not_used(self):
        agents = [
            make_agent("senior-off", ["Billing"], senior=True, available=False),
            make_agent("junior", ["Legal"], load=2),
        ]
        assert select_agent(ticket("Billing", sentiment=Sentiment.NEGATIVE), agents).agent_id == "junior"

    def test_skill_match_applies_among_seniors(self):
        agents = [
            make_agent("senior-idle", ["Legal"], load=0, senior=True),
            make_agent("senior-billing", ["Billing"], load=4, max_load=10, senior=True),
            make_agent("junior-billing", ["Billing"], load=0),
        ]
        chosen = select_agent(ticket("Billing", sentiment=Sentiment.NEGATIVE), agents)
        assert chosen.agent_id == "senior-billing"

    def test_least_loaded_senior_when_no_senior_matches(self):
        agents = [
            make_agent("s1", ["Legal"], load=3, senior=True),
            make_agent("s2", ["Escalation"], load=1, senior=True),
            make_agent("j", ["Billing"], load=0),
        ]
        assert select_agent(ticket("Billing", Priority.URGENT), agents).agent_id == "s2"


class TestRanking:
    def test_higher_score_beats_lower_load(self):
        agents = [
            make_agent("one-skill", ["Billing"], load=0),
            make_agent("two-skills", ["Billing", "Account Issues"], load=3),
        ]
        chosen = select_agent(ticket("Billing / Account Issues"), agents)
        assert chosen.agent_id == "two-skills"

    def test_equal_score_prefers_lower_load(self):
        agents = [make_agent("busy", ["Billing"], load=3), make_agent("idle", ["Billing"], load=1)]
        assert select_agent(ticket("Billing"), agents).agent_id == "idle"

    def test_equal_keys_keep_input_order(self):
        agents = [make_agent("first", ["Billing"], load=2), make_agent("second", ["Billing"], load=2)]
        assert select_agent(ticket("Billing"), agents).agent_id == "first"
        assert select_agent(ticket("Billing"), list(reversed(agents))).agent_id == "second"

    def test_no_skill_match_picks_lowest_load_first_in_order(self):
        agents = [
            make_agent("a", ["Legal"], load=3),
            make_agent("b", ["Sales"], load=1),
            make_agent("c", ["Onboarding"], load=1),
        ]
        assert select_agent(ticket("Billing"), agents).agent_id == "b"

    def test_rank_agents_head_matches_select(self, billing_and_tech_pool):
        t = ticket("Support")
        ranked = rank_agents(t, billing_and_tech_pool)
        assert ranked[0] is select_agent(t, billing_and_tech_pool)

    def test_rank_agents_only_skill_matched_tier(self):
        agents = [make_agent("x", ["Legal"]), make_agent("y", ["Billing"], load=2), make_agent("z", ["Billing"], load=1)]
        assert [a.agent_id for a in rank_agents(ticket("Billing"), agents)] == ["z", "y"]


class TestPurity:
    def test_input_not_mutated(self, billing_and_tech_pool):
        before = [a.model_dump() for a in billing_and_tech_pool]
        select_agent(ticket("Billing", Priority.URGENT, Sentiment.NEGATIVE), billing_and_tech_pool)
        assert [a.model_dump() for a in billing_and_tech_pool] == before

    def test_repeatable(self, billing_and_tech_pool):
        t = ticket("Technical Support", Priority.HIGH)
        assert select_agent(t, billing_and_tech_pool) is select_agent(t, billing_and_tech_pool)

    def test_rejects_non_descriptor(self, billing_and_tech_pool):
        with pytest.raises(TypeError):
            select_agent({"category": "Billing"}, billing_and_tech_pool)

    def test_malformed_descriptor_rejected_at_construction(self):
        with pytest.raises(ValidationError):
            TicketDescriptor(category="Billing", priority="critical")


class TestRandomPools:
    CATEGORIES = ["Billing", "Technical Support", "API Issues", "Account Issues", "Feature Request", "Legal"]
    SKILLS = ["Billing", "Technical Support", "Bug Report", "API Issues", "Account Issues", "Payments", "Escalation"]

    def _pool(self, rng):
        agents = []
        for i in range(rng.randint(0, 7)):
            max_load = rng.randint(1, 6)
            agents.append(make_agent(
                f"a{i}",
                rng.sample(self.SKILLS, rng.randint(0, 3)),
                load=rng.randint(0, max_load),
                max_load=max_load,
                available=rng.random() > 0.2,
                senior=rng.random() > 0.6,
            ))
        return agents

    def test_properties(self):
        rng = random.Random(1234)
        for _ in range(500):
            agents = self._pool(rng)
            t = ticket(
                rng.choice(self.CATEGORIES),
                rng.choice(list(Priority)),
                rng.choice(list(Sentiment) + [None]),
            )
            chosen = select_agent(t, agents)
            eligible = eligible_agents(agents)
            if not eligible:
                assert chosen is None
                continue
            # an assignment happens whenever any agent is eligible
            assert chosen is not None
            assert chosen.is_available and chosen.current_load < chosen.max_load
            if t.needs_escalation and any(a.senior_level for a in eligible):
                assert chosen.senior_level
            if all(skill_match_score(t.category, a.skills) == 0 for a in eligible) and not t.needs_escalation:
                lowest = min(a.current_load for a in eligible)
                assert chosen is next(a for a in eligible if a.current_load == lowest)
