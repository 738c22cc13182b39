"""
Topic-expertise lookup against the Neo4j graph (Agent)-[:EXPERT_IN]->(Topic).

The graph can encode richer topic taxonomies than flat skill tags, but it is an
external dependency: lookup() never raises and reports failures as an
ExpertLookup.error result so the orchestrator can fall back to the local engine.
"""

import asyncio
import logging
from typing import Optional

from neo4j import AsyncGraphDatabase

from helpdesk.config import EXPERT_LOOKUP_TIMEOUT_SECONDS, NEO4J_PASSWORD, NEO4J_URI, NEO4J_USER
from helpdesk.models import Expert, ExpertLookup

logger = logging.getLogger(__name__)

# Least-busy expert for the topic.
EXPERT_FOR_TOPIC_QUERY = """
MATCH (t:Topic {name: $topic})<-[:EXPERT_IN]-(a:Agent)
OPTIONAL MATCH (a)-[:ASSIGNED_TO]->(tk:Ticket)
WITH a, count(tk) AS ticketCount
RETURN coalesce(a.name, a.displayName) AS name, a.email AS email
ORDER BY ticketCount ASC
LIMIT 1
"""

RECORD_ASSIGNMENT_QUERY = """
MATCH (a:Agent {email: $email})
MERGE (t:Ticket {id: $ticket_id})
WITH a, t
OPTIONAL MATCH (:Agent)-[old:ASSIGNED_TO]->(t)
DELETE old
MERGE (a)-[r:ASSIGNED_TO]->(t)
SET r.assignedAt = datetime()
"""


class Neo4jExpertLookup:
    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        timeout: float = EXPERT_LOOKUP_TIMEOUT_SECONDS,
    ):
        self._uri = uri
        self._auth = (user, password)
        self._timeout = timeout
        self._driver = None

    def _get_driver(self):
        if self._driver is None:
            self._driver = AsyncGraphDatabase.driver(self._uri, auth=self._auth)
        return self._driver

    async def _records(self, query: str, params: dict) -> list:
        result = await self._get_driver().execute_query(query, params)
        return result.records

    async def lookup(self, topic: str) -> ExpertLookup:
        """Least-busy expert for the topic, or not_found / error. Never raises."""
        if not topic or not topic.strip():
            return ExpertLookup.not_found("blank topic")
        try:
            records = await asyncio.wait_for(
                self._records(EXPERT_FOR_TOPIC_QUERY, {"topic": topic.strip()}),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            return ExpertLookup.error(f"expertise lookup timed out after {self._timeout}s")
        except Exception as e:
            return ExpertLookup.error(f"{type(e).__name__}: {e}")

        if not records:
            return ExpertLookup.not_found(f"no expert for topic {topic!r}")
        record = records[0]
        email = record.get("email")
        if not email:
            return ExpertLookup.not_found("expert has no email")
        return ExpertLookup.found(Expert(name=record.get("name") or "", email=email))

    async def record_assignment(self, agent_email: str, ticket_id: str) -> None:
        """Mirror the assignment edge into the graph (overwrites any previous one)."""
        await asyncio.wait_for(
            self._get_driver().execute_query(
                RECORD_ASSIGNMENT_QUERY, {"email": agent_email, "ticket_id": ticket_id}
            ),
            timeout=self._timeout,
        )

    async def close(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None


def build_expert_lookup() -> Optional[Neo4jExpertLookup]:
    """Lookup for the configured graph, or None when NEO4J_URI is not set."""
    if not NEO4J_URI:
        logger.info("NEO4J_URI not set; expertise-graph lookup disabled.")
        return None
    return Neo4jExpertLookup(NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD)
