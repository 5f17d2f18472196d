"""Discovery conversation database operations.

Plain functions raise on failure. ConversationRecorder wraps them for the
chat route, where every write is best-effort.
"""

from datetime import datetime, timezone  # noqa: UP035
from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase, persistence_enabled

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def _first_row(response: Any, operation: str) -> dict[str, Any]:
    if not response.data:
        raise ValueError(f"No data returned from {operation}")
    return response.data[0]


# =============================================================================
# Conversations and messages
# =============================================================================


def find_conversation_by_session(session_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .select("*")
        .eq("session_id", session_id)
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    return response.data[0] if response.data else None


def get_or_create_conversation(session_id: str, app_variant: str | None = None) -> dict[str, Any]:
    """
    Get the active conversation for a browser session, creating it if needed.

    Args:
        session_id: Anonymous session identifier from the cookie
        app_variant: Optional landing-page variant

    Returns:
        Conversation row
    """
    existing = find_conversation_by_session(session_id)
    if existing:
        return existing

    supabase = get_supabase()
    response = (
        supabase.table("conversations")
        .insert(
            {
                "session_id": session_id,
                "status": "active",
                "current_step": 1,
                "app_variant": app_variant,
            }
        )
        .execute()
    )
    conversation = _first_row(response, "get_or_create_conversation")
    logger.info(f"Created conversation {conversation['id']} for session {session_id}")
    return conversation


def save_message(
    conversation_id: str,
    role: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    supabase = get_supabase()
    response = (
        supabase.table("messages")
        .insert(
            {
                "conversation_id": conversation_id,
                "role": role,
                "content": content,
                "metadata": metadata or {},
            }
        )
        .execute()
    )
    return _first_row(response, "save_message")


def update_context(conversation_id: str, context: dict[str, Any]) -> None:
    """
    Update JSON context columns on the conversation.

    Args:
        conversation_id: Conversation UUID
        context: Any of context_summary, website_analysis, financial_analysis,
            lead_signals, research_brief, citations, current_step
    """
    supabase = get_supabase()
    supabase.table("conversations").update({**context, "updated_at": _utc_now_iso()}).eq(
        "id", conversation_id
    ).execute()


def save_business_plan(conversation_id: str, plan: dict[str, Any]) -> dict[str, Any]:
    """Insert the plan and mark the conversation completed."""
    supabase = get_supabase()
    response = (
        supabase.table("business_plans")
        .insert({"conversation_id": conversation_id, "status": "generated", **plan})
        .execute()
    )
    saved = _first_row(response, "save_business_plan")

    now = _utc_now_iso()
    supabase.table("conversations").update(
        {"status": "completed", "is_completed": True, "completed_at": now, "updated_at": now}
    ).eq("id", conversation_id).execute()

    logger.info(f"Saved business plan {saved.get('id')} for conversation {conversation_id}")
    return saved


# =============================================================================
# Leads, analytics and health
# =============================================================================


def save_lead(lead: dict[str, Any]) -> dict[str, Any]:
    """Insert a lead, or update the existing row with the same email."""
    supabase = get_supabase()
    existing = supabase.table("leads").select("id").eq("email", lead["email"]).execute()
    if existing.data:
        response = (
            supabase.table("leads")
            .update({**lead, "updated_at": _utc_now_iso()})
            .eq("id", existing.data[0]["id"])
            .execute()
        )
        return _first_row(response, "save_lead")

    response = supabase.table("leads").insert({"status": "new", **lead}).execute()
    return _first_row(response, "save_lead")


def track_event(
    event_type: str,
    event_name: str,
    properties: dict[str, Any] | None = None,
    session_id: str | None = None,
    conversation_id: str | None = None,
) -> None:
    supabase = get_supabase()
    supabase.table("analytics_events").insert(
        {
            "event_type": event_type,
            "event_name": event_name,
            "properties": properties or {},
            "session_id": session_id,
            "conversation_id": conversation_id,
        }
    ).execute()


def log_system_health(
    service: str,
    success: bool,
    endpoint: str | None = None,
    status_code: int | None = None,
    response_time: int | None = None,
    error_message: str | None = None,
    error_type: str | None = None,
    tokens_used: int | None = None,
    model_used: str | None = None,
    conversation_id: str | None = None,
) -> None:
    supabase = get_supabase()
    supabase.table("system_health").insert(
        {
            "service": service,
            "success": success,
            "endpoint": endpoint,
            "status_code": status_code,
            "response_time": response_time,
            "error_message": error_message,
            "error_type": error_type,
            "tokens_used": tokens_used,
            "model_used": model_used,
            "conversation_id": conversation_id,
        }
    ).execute()


# =============================================================================
# Feedback
# =============================================================================


def save_feedback(feedback: dict[str, Any]) -> str:
    """
    Insert a feedback row.

    Returns:
        Feedback id

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()
    response = supabase.table("feedback").insert(feedback).execute()
    return str(_first_row(response, "save_feedback")["id"])


def list_feedback(
    conversation_id: str | None = None,
    step_number: int | None = None,
) -> list[dict[str, Any]]:
    supabase = get_supabase()
    query = supabase.table("feedback").select("*")
    if conversation_id:
        query = query.eq("conversation_id", conversation_id)
    if step_number is not None:
        query = query.eq("step_number", step_number)
    response = query.order("created_at", desc=True).execute()
    return response.data or []


# =============================================================================
# Best-effort recorder
# =============================================================================


class ConversationRecorder:
    """Persistence side effects for one request.

    Every method logs and swallows database errors so a Supabase outage can
    never fail a chat turn. When persistence is disabled every call is a no-op.
    """

    def __init__(
        self,
        session_id: str,
        conversation_id: str | None = None,
        app_variant: str | None = None,
        enabled: bool | None = None,
    ):
        self.session_id = session_id
        self.app_variant = app_variant
        self.enabled = persistence_enabled() if enabled is None else enabled
        self._conversation_id = conversation_id

    @property
    def conversation_id(self) -> str | None:
        if self._conversation_id is None and self.enabled:
            try:
                conversation = get_or_create_conversation(self.session_id, self.app_variant)
                self._conversation_id = str(conversation["id"])
            except Exception as e:
                logger.warning(f"Could not resolve conversation for session {self.session_id}: {e}")
        return self._conversation_id

    def save_message(self, role: str, content: str, metadata: dict[str, Any] | None = None) -> None:
        if not self.enabled or not self.conversation_id:
            return
        try:
            save_message(self.conversation_id, role, content, metadata)
        except Exception as e:
            logger.warning(f"Failed to save {role} message: {e}")

    def update_context(self, context: dict[str, Any]) -> None:
        if not self.enabled or not self.conversation_id:
            return
        try:
            update_context(self.conversation_id, context)
        except Exception as e:
            logger.warning(f"Failed to update conversation context: {e}")

    def save_business_plan(self, plan: dict[str, Any]) -> None:
        if not self.enabled or not self.conversation_id:
            return
        try:
            save_business_plan(self.conversation_id, plan)
        except Exception as e:
            logger.warning(f"Failed to save business plan: {e}")

    def track_event(self, event_type: str, event_name: str, properties: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        try:
            track_event(event_type, event_name, properties, self.session_id, self._conversation_id)
        except Exception as e:
            logger.warning(f"Failed to track event {event_name}: {e}")

    def log_system_health(self, service: str, success: bool, **details: Any) -> None:
        if not self.enabled:
            return
        try:
            log_system_health(service, success, conversation_id=self._conversation_id, **details)
        except Exception as e:
            logger.warning(f"Failed to log system health for {service}: {e}")
