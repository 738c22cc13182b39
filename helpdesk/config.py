"""Configuration for the routing service, worker and collaborators."""

import os

REDIS_URL: str = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_CONN_TIMEOUT: int = int(os.environ.get("REDIS_CONN_TIMEOUT", "5"))

# "redis" (shared, multi-process) or "memory" (single process, dev/tests)
AGENT_REGISTRY_BACKEND: str = os.environ.get("AGENT_REGISTRY_BACKEND", "redis").lower()
# Optimistic transaction retries on a contended agent key.
REGISTRY_CAS_RETRIES: int = int(os.environ.get("REGISTRY_CAS_RETRIES", "10"))

# --- Expertise graph (Neo4j); empty URI disables the lookup ---
NEO4J_URI: str = os.environ.get("NEO4J_URI", "")
NEO4J_USER: str = os.environ.get("NEO4J_USER", "neo4j")
NEO4J_PASSWORD: str = os.environ.get("NEO4J_PASSWORD", "neo4j")
EXPERT_LOOKUP_TIMEOUT_SECONDS: float = float(os.environ.get("EXPERT_LOOKUP_TIMEOUT_SECONDS", "2.0"))

# --- Routing ---
# Route-and-commit attempts when the chosen agent fills up concurrently.
ROUTING_MAX_ATTEMPTS: int = int(os.environ.get("ROUTING_MAX_ATTEMPTS", "3"))

# --- Reminders ---
REMINDER_DELAY_HOURS: float = float(os.environ.get("REMINDER_DELAY_HOURS", "24"))
REMINDER_DURATION_MINUTES: int = int(os.environ.get("REMINDER_DURATION_MINUTES", "30"))

# --- Notifications ---
# Optional Slack or Discord webhook URL; admin notifications are also POSTed there.
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")
NOTIFICATIONS_MAX_PER_USER: int = int(os.environ.get("NOTIFICATIONS_MAX_PER_USER", "200"))

# --- Sentiment (used when the submitter does not provide one) ---
SENTIMENT_MODEL: str = os.environ.get("SENTIMENT_MODEL", "distilbert-base-uncased-finetuned-sst-2-english")
SENTIMENT_USE_TRANSFORMER: bool = os.environ.get("SENTIMENT_USE_TRANSFORMER", "1") not in ("0", "false", "no")
SENTIMENT_CONFIDENCE: float = float(os.environ.get("SENTIMENT_CONFIDENCE", "0.75"))
