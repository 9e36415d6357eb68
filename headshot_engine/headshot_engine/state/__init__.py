"""State persistence layer for generations, usage and credits."""

from headshot_engine.state.database import get_engine, get_session, get_session_factory, session_scope
from headshot_engine.state.repository import (
    CreditsRepository,
    GenerationRepository,
    ProfileRepository,
    UsageRepository,
    WebhookEventRepository,
)

__all__ = [
    "CreditsRepository",
    "GenerationRepository",
    "ProfileRepository",
    "UsageRepository",
    "WebhookEventRepository",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
]
