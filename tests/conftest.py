import os

# Set before helpdesk.config is imported: keyword sentiment, in-process registry.
os.environ.setdefault("SENTIMENT_USE_TRANSFORMER", "0")
os.environ.setdefault("AGENT_REGISTRY_BACKEND", "memory")

import pytest

from tests.helpers import make_agent


@pytest.fixture
def billing_and_tech_pool():
    """Agent 1: junior billing specialist. Agent 2: senior technical support."""
    return [
        make_agent("agent-1", skills=["Billing"], load=2, max_load=5),
        make_agent("agent-2", skills=["Technical Support"], load=1, max_load=5, senior=True),
    ]
