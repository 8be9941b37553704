"""
Tests for environment-driven settings.
"""
import pytest

from gateway.core.config import (
    AVAILABLE_MODELS,
    DEFAULT_MODEL_ID,
    Settings,
    get_settings,
    reset_settings,
)
from gateway.core.errors import ConfigurationError

ENV_VARS = [
    "UPSTREAM_API_BASE",
    "UPSTREAM_API_KEY",
    "UPSTREAM_TIMEOUT_SECONDS",
    "KNOWLEDGE_BASE_ID",
    "AGENT_ID",
    "AGENT_ALIAS_ID",
    "AGENT_ALIAS_URL",
    "CATALOG_URL",
    "DEFAULT_MODEL_ID",
    "UPSTREAM_MAX_CONCURRENT",
    "UPSTREAM_MIN_INTERVAL_SECONDS",
    "UPSTREAM_MAX_RETRIES",
    "UPSTREAM_BASE_DELAY_SECONDS",
    "UPSTREAM_MAX_DELAY_SECONDS",
    "UPSTREAM_JITTER_FACTOR",
    "SESSION_TTL_SECONDS",
    "SESSION_MAX_ENTRIES",
    "SESSION_SWEEP_INTERVAL_SECONDS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield monkeypatch
    reset_settings()


class TestSettingsFromEnv:

    def test_defaults(self, clean_env):
        settings = Settings.from_env()

        assert settings.upstream_api_base == "http://localhost:8080"
        assert settings.knowledge_base_id is None
        assert settings.default_model_id == DEFAULT_MODEL_ID
        assert settings.dispatch.max_concurrent == 2
        assert settings.dispatch.min_interval_seconds == 1.5
        assert settings.dispatch.max_retries == 5
        assert settings.dispatch.base_delay_seconds == 2.0
        assert settings.dispatch.max_delay_seconds == 30.0
        assert settings.dispatch.jitter_factor == 0.1
        assert settings.sessions.ttl_seconds == 1800
        assert settings.sessions.sweep_interval_seconds == 300

    def test_reads_environment(self, clean_env):
        clean_env.setenv("KNOWLEDGE_BASE_ID", "  KB123  ")
        clean_env.setenv("AGENT_ALIAS_ID", "ALIAS1")
        clean_env.setenv("UPSTREAM_MAX_CONCURRENT", "4")
        clean_env.setenv("UPSTREAM_MIN_INTERVAL_SECONDS", "0.5")

        settings = Settings.from_env()

        assert settings.knowledge_base_id == "KB123"
        assert settings.agent_alias_id == "ALIAS1"
        assert settings.dispatch.max_concurrent == 4
        assert settings.dispatch.min_interval_seconds == 0.5

    def test_blank_value_uses_default(self, clean_env):
        clean_env.setenv("KNOWLEDGE_BASE_ID", "   ")

        assert Settings.from_env().knowledge_base_id is None

    @pytest.mark.parametrize(
        "name,value",
        [
            ("UPSTREAM_MAX_CONCURRENT", "two"),
            ("UPSTREAM_MAX_CONCURRENT", "0"),
            ("UPSTREAM_MIN_INTERVAL_SECONDS", "-1"),
            ("SESSION_TTL_SECONDS", "soon"),
        ],
    )
    def test_invalid_numbers_raise(self, clean_env, name, value):
        clean_env.setenv(name, value)

        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env()
        assert name in exc_info.value.message

    def test_get_settings_is_cached(self, clean_env):
        clean_env.setenv("AGENT_ID", "AGENT1")
        first = get_settings()
        clean_env.setenv("AGENT_ID", "AGENT2")

        assert get_settings() is first
        reset_settings()
        assert get_settings().agent_id == "AGENT2"


class TestResolveModelId:

    def test_none_uses_default(self):
        assert Settings().resolve_model_id(None) == DEFAULT_MODEL_ID

    def test_known_key(self):
        assert Settings().resolve_model_id("claude-3-haiku") == AVAILABLE_MODELS["claude-3-haiku"]["id"]

    def test_full_id_passes_through(self):
        assert Settings().resolve_model_id("amazon.titan-text-lite-v1") == "amazon.titan-text-lite-v1"

    def test_unknown_key_uses_default(self):
        settings = Settings(default_model_id="custom.model-v1")
        assert settings.resolve_model_id("not-a-model") == "custom.model-v1"
