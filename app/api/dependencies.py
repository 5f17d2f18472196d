"""Shared FastAPI dependencies."""

import uuid

from fastapi import Request, Response

from app.core.providers import ProviderHealthRegistry
from app.core.rag import RagStore, get_rag_store

SESSION_COOKIE = "ai-5q-session-id"
SESSION_MAX_AGE = 60 * 60 * 24 * 30


def get_provider_registry(request: Request) -> ProviderHealthRegistry:
    """Registry created in the app lifespan; built on demand if startup was skipped."""
    registry = getattr(request.app.state, "provider_registry", None)
    if registry is None:
        registry = ProviderHealthRegistry.from_settings()
        request.app.state.provider_registry = registry
    return registry


def get_store() -> RagStore:
    return get_rag_store()


def resolve_session_id(request: Request, response: Response, explicit: str | None = None) -> str:
    """Session id from the body, the cookie, or a new one (set as a cookie)."""
    session_id = explicit or request.cookies.get(SESSION_COOKIE)
    if not session_id:
        session_id = str(uuid.uuid4())
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=SESSION_MAX_AGE,
            httponly=True,
            samesite="lax",
        )
    return session_id
