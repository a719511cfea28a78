"""
Tests for configuration loading from the environment.
"""

import pytest

from config.settings import DEFAULT_SYSTEM_PROMPT, Settings

EMPTY_VARS = [
    "LLM_PROVIDER",
    "SYSTEM_PROMPT",
    "LLM_TIMEOUT",
    "OPENAI_TEMPERATURE",
    "OLLAMA_URL",
    "OLLAMA_TEMPERATURE",
    "MIN_SIM_SCORE",
    "RAG_SEARCH_URL",
    "RAG_TIMEOUT",
    "SESSION_BACKEND",
    "MONGODB_URI",
    "CHAT_PORT",
    "NONCE_LIFETIME",
    "LOG_LEVEL",
]


class TestSettingsFromEnv:
    """Tests for Settings.from_env."""

    def test_values_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "ollama")
        monkeypatch.setenv("OLLAMA_MODEL", "mistral")
        monkeypatch.setenv("OLLAMA_TEMPERATURE", "0.2")
        monkeypatch.setenv("MIN_SIM_SCORE", "0.5")
        monkeypatch.setenv("CHAT_PORT", "9000")

        settings = Settings.from_env()

        assert settings.llm.provider == "ollama"
        assert settings.llm.ollama.model == "mistral"
        assert settings.llm.ollama.temperature == 0.2
        assert settings.retrieval.min_sim_score == 0.5
        assert settings.server.port == 9000

    def test_empty_values_fall_back_to_defaults(self, monkeypatch):
        for name in EMPTY_VARS:
            monkeypatch.setenv(name, "")

        settings = Settings.from_env()

        assert settings.llm.provider == "openai"
        assert settings.llm.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert settings.llm.timeout == 60.0
        assert settings.llm.openai.temperature == 0.7
        assert settings.llm.ollama.base_url == "http://localhost:11434"
        assert settings.llm.ollama.temperature == 0.7
        assert settings.retrieval.min_sim_score == 0.0
        assert settings.retrieval.search_url is None
        assert settings.retrieval.timeout == 60.0
        assert settings.storage.backend == "memory"
        assert settings.storage.mongodb_uri is None
        assert settings.server.port == 8000
        assert settings.server.nonce_lifetime == 86400
        assert settings.log_level == "INFO"

    def test_invalid_number_is_rejected(self, monkeypatch):
        monkeypatch.setenv("LLM_TIMEOUT", "soon")
        with pytest.raises(ValueError):
            Settings.from_env()
