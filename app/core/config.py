"""Configuration management for the AI discovery engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    DISCOVERY_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # NVIDIA NIM configuration
    NVIDIA_API_KEY: str | None = Field(default=None, description="NVIDIA NIM API key")
    NVIDIA_API_URL: str = Field(
        default="https://integrate.api.nvidia.com/v1/chat/completions",
        description="NIM chat completions endpoint",
    )
    NVIDIA_EMBEDDINGS_URL: str = Field(
        default="https://integrate.api.nvidia.com/v1/embeddings",
        description="NIM embeddings endpoint",
    )

    # Model selection
    LLM_DEFAULT_MODEL: str = Field(
        default="nvidia/llama-3.1-nemotron-ultra-253b-v1",
        description="Model for discovery questions and extraction",
    )
    LLM_PLAN_MODEL: str = Field(
        default="nvidia/llama-3.1-nemotron-ultra-253b-v1",
        description="Model for plan generation",
    )
    LLM_COST_MODE_MODEL: str = Field(
        default="nvidia/llama-3.1-nemotron-nano-4b-v1.1",
        description="Cheaper model used when cost mode is on",
    )
    LLM_FALLBACK_MODEL: str = Field(
        default="nvidia/llama-3.1-nemotron-70b-instruct",
        description="Smaller same-vendor model used by the fallback provider",
    )
    EMBEDDINGS_MODEL: str = Field(
        default="nvidia/nv-embedqa-e5-v5", description="Embedding model for the RAG store"
    )

    # Gateway behaviour
    LLM_TIMEOUT_SECONDS: float = Field(default=30.0, description="Timeout for question turns")
    PLAN_TIMEOUT_SECONDS: float = Field(default=120.0, description="Timeout for plan generation")
    LLM_MAX_RETRIES: int = Field(default=2, description="Transient error retries per call")
    LLM_BACKOFF_BASE_MS: int = Field(default=300, description="Backoff base in milliseconds")

    # Alternate vendors (optional)
    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    OPENAI_MODEL: str = Field(default="gpt-4o-mini", description="Default OpenAI model")
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    ANTHROPIC_MODEL: str = Field(
        default="claude-3-haiku-20240307", description="Default Anthropic model"
    )

    # Provider health monitoring
    PROVIDER_HEALTH_INTERVAL_SECONDS: float = Field(
        default=300.0, description="Seconds between provider health checks"
    )
    PROVIDER_HEALTH_MONITOR_ENABLED: bool | None = Field(
        default=None, description="Force health monitor on/off (default: prod only)"
    )

    # Supabase persistence (optional)
    SUPABASE_URL: str | None = Field(default=None, description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(
        default=None, description="Supabase service role key"
    )
    PERSISTENCE_ENABLED: bool = Field(default=True, description="Write turns and plans to Supabase")

    # Email (Resend)
    RESEND_API_KEY: str | None = Field(default=None, description="Resend API key")
    RESEND_FROM_EMAIL: str = Field(
        default="noreply@5qstrategy.com", description="Sender address for plan emails"
    )
    RESEND_FROM_NAME: str = Field(default="AI Business Plan", description="Sender display name")
    LEAD_NOTIFICATION_EMAIL: str | None = Field(
        default=None, description="Inbox that receives new-lead notifications"
    )

    # Website fetching
    MICROLINK_API_URL: str = Field(default="https://api.microlink.io", description="Microlink API")
    WEBSITE_FETCH_TIMEOUT: float = Field(default=15.0, description="Website fetch timeout")
    WEBSITE_MAX_CHARS: int = Field(default=3000, description="Max website characters analysed")

    # Upload limits
    MAX_UPLOAD_BYTES: int = Field(default=10 * 1024 * 1024, description="Max upload size in bytes")
    MAX_FINANCIAL_CHARS: int = Field(
        default=4000, description="Max financial document characters analysed"
    )

    # Feature flags
    RAG_ENABLED: bool = Field(default=True, description="Embed uploaded documents for retrieval")
    DEEP_RESEARCH_ENABLED: bool = Field(default=True, description="Run the research agent")
    LEAD_SIGNALS_ENABLED: bool = Field(default=True, description="Extract lead signals with the plan")

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)

    @property
    def health_monitor_enabled(self) -> bool:
        if self.PROVIDER_HEALTH_MONITOR_ENABLED is not None:
            return self.PROVIDER_HEALTH_MONITOR_ENABLED
        return self.DISCOVERY_ENV == "prod"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables have invalid values
    """
    return Settings()
