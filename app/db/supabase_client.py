"""Supabase client initialization."""

from functools import lru_cache

from supabase import Client, create_client

from app.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get Supabase client instance (cached singleton).

    Returns:
        Supabase client configured with service role key

    Raises:
        RuntimeError: If Supabase is not configured or initialization fails
    """
    settings = get_settings()
    if not settings.supabase_configured:
        raise RuntimeError("Supabase is not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)")

    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e


def persistence_enabled() -> bool:
    settings = get_settings()
    return settings.PERSISTENCE_ENABLED and settings.supabase_configured
