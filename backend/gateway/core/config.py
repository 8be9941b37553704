"""
Gateway configuration.

Settings are read from environment variables (a local .env file is loaded
first when present). Numeric values are validated eagerly so a bad deployment
fails at startup with an actionable ConfigurationError instead of on the first
upstream call.

Environment configuration:
- UPSTREAM_API_BASE: Base URL of the retrieval/generation backend
- UPSTREAM_API_KEY: Bearer token for the backend (optional)
- UPSTREAM_TIMEOUT_SECONDS: Per-request timeout (default: 60.0)
- KNOWLEDGE_BASE_ID: Knowledge base used by the knowledge-base route
- AGENT_ID: Agent used by the agent route
- AGENT_ALIAS_ID / AGENT_ALIAS_URL: Static alias, or URL returning the active alias
- CATALOG_URL: URL returning the live source catalog
- DEFAULT_MODEL_ID: Foundation model used when the request names none
- UPSTREAM_MAX_CONCURRENT / UPSTREAM_MIN_INTERVAL_SECONDS: Dispatch queue limits
- UPSTREAM_MAX_RETRIES / UPSTREAM_BASE_DELAY_SECONDS / UPSTREAM_MAX_DELAY_SECONDS /
  UPSTREAM_JITTER_FACTOR: Retry policy
- SESSION_TTL_SECONDS / SESSION_MAX_ENTRIES / SESSION_SWEEP_INTERVAL_SECONDS: Session eviction
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from gateway.core.errors import ConfigurationError

load_dotenv()

DEFAULT_MODEL_ID = "anthropic.claude-3-sonnet-20240229-v1:0"

# Foundation models clients may select by key
AVAILABLE_MODELS: Dict[str, Dict[str, str]] = {
    "claude-3-sonnet": {
        "id": "anthropic.claude-3-sonnet-20240229-v1:0",
        "name": "Claude 3 Sonnet",
        "provider": "Anthropic",
        "description": "Balanced performance and speed",
    },
    "claude-3-haiku": {
        "id": "anthropic.claude-3-haiku-20240307-v1:0",
        "name": "Claude 3 Haiku",
        "provider": "Anthropic",
        "description": "Fast and efficient",
    },
    "titan-text-express": {
        "id": "amazon.titan-text-express-v1",
        "name": "Titan Text G1 - Express",
        "provider": "Amazon",
        "description": "Fast text generation",
    },
}


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class DispatchSettings:
    """Dispatch queue limits and retry policy."""

    max_concurrent: int = 2
    min_interval_seconds: float = 1.5
    max_retries: int = 5
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_factor: float = 0.1


@dataclass(frozen=True)
class SessionSettings:
    """Session eviction policy."""

    ttl_seconds: float = 30 * 60
    max_entries: int = 10_000
    sweep_interval_seconds: float = 5 * 60


@dataclass(frozen=True)
class Settings:
    """Resolved gateway settings."""

    upstream_api_base: str = "http://localhost:8080"
    upstream_api_key: Optional[str] = None
    upstream_timeout_seconds: float = 60.0
    knowledge_base_id: Optional[str] = None
    agent_id: Optional[str] = None
    agent_alias_id: Optional[str] = None
    agent_alias_url: Optional[str] = None
    catalog_url: Optional[str] = None
    default_model_id: str = DEFAULT_MODEL_ID
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    sessions: SessionSettings = field(default_factory=SessionSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        dispatch = DispatchSettings(
            max_concurrent=_env_int("UPSTREAM_MAX_CONCURRENT", 2, minimum=1),
            min_interval_seconds=_env_float("UPSTREAM_MIN_INTERVAL_SECONDS", 1.5),
            max_retries=_env_int("UPSTREAM_MAX_RETRIES", 5),
            base_delay_seconds=_env_float("UPSTREAM_BASE_DELAY_SECONDS", 2.0),
            max_delay_seconds=_env_float("UPSTREAM_MAX_DELAY_SECONDS", 30.0),
            jitter_factor=_env_float("UPSTREAM_JITTER_FACTOR", 0.1),
        )
        sessions = SessionSettings(
            ttl_seconds=_env_float("SESSION_TTL_SECONDS", 30 * 60, minimum=1.0),
            max_entries=_env_int("SESSION_MAX_ENTRIES", 10_000, minimum=1),
            sweep_interval_seconds=_env_float("SESSION_SWEEP_INTERVAL_SECONDS", 5 * 60, minimum=1.0),
        )
        return cls(
            upstream_api_base=_env_str("UPSTREAM_API_BASE", "http://localhost:8080"),
            upstream_api_key=_env_str("UPSTREAM_API_KEY"),
            upstream_timeout_seconds=_env_float("UPSTREAM_TIMEOUT_SECONDS", 60.0, minimum=0.1),
            knowledge_base_id=_env_str("KNOWLEDGE_BASE_ID"),
            agent_id=_env_str("AGENT_ID"),
            agent_alias_id=_env_str("AGENT_ALIAS_ID"),
            agent_alias_url=_env_str("AGENT_ALIAS_URL"),
            catalog_url=_env_str("CATALOG_URL"),
            default_model_id=_env_str("DEFAULT_MODEL_ID", DEFAULT_MODEL_ID),
            dispatch=dispatch,
            sessions=sessions,
        )

    def resolve_model_id(self, model: Optional[str]) -> str:
        """
        Resolve a model key or full model ID.

        Full IDs (containing '.' or ':') pass through; known keys map to their
        ID; anything else falls back to the default model.
        """
        if not model:
            return self.default_model_id
        if "." in model or ":" in model:
            return model
        entry = AVAILABLE_MODELS.get(model)
        return entry["id"] if entry else self.default_model_id


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Global settings accessor (read from the environment once)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
