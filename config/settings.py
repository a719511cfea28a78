"""
Configuration settings for the RAG Chat service.

This module handles all configuration management using environment variables.
Everything is configurable via .env file; every value except the OpenAI API key
resolves to a default when absent.
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


def _getenv(key: str, default: str) -> str:
    """Read an environment variable, treating an empty value as unset."""
    return os.getenv(key) or default


@dataclass
class OpenAIConfig:
    """Hosted provider settings."""

    api_key: str = ""
    model: str = "gpt-4o"
    temperature: float = 0.7


@dataclass
class OllamaConfig:
    """Self-hosted provider settings."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3"
    temperature: float = 0.7
    api_key: str = ""  # Only needed behind an authenticating proxy


@dataclass
class LLMConfig:
    """Configuration for LLM providers."""

    provider: Literal["openai", "ollama", "hosted", "self-hosted"] = "openai"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    timeout: float = 60.0

    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    ollama: OllamaConfig = field(default_factory=OllamaConfig)


@dataclass
class RetrievalConfig:
    """Configuration for the external RAG search service."""

    min_sim_score: float = 0.0  # Results scoring below this are dropped
    limit: int = 5
    search_url: Optional[str] = None  # RAG disabled when unset
    api_key: Optional[str] = None
    timeout: float = 60.0


@dataclass
class StorageConfig:
    """Configuration for chat session persistence."""

    backend: Literal["memory", "json", "mongodb"] = "memory"

    # JSON file settings
    session_dir: str = "./data/sessions"

    # MongoDB settings
    mongodb_uri: Optional[str] = None
    mongodb_database: str = "rag_chat"
    mongodb_collection: str = "chat_history"


@dataclass
class ServerConfig:
    """Configuration for the HTTP request surface."""

    host: str = "127.0.0.1"
    port: int = 8000
    nonce_secret: str = "change-me"
    nonce_lifetime: int = 86400  # Seconds a token stays valid (at most)


@dataclass
class Settings:
    """
    Main settings class that aggregates all configurations.

    Usage:
        settings = get_settings()
        print(settings.llm.provider)
        print(settings.llm.ollama.model)
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Paths
    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent)

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create Settings instance from environment variables.

        This is the primary way to instantiate Settings.
        """
        llm = LLMConfig(
            provider=_getenv("LLM_PROVIDER", "openai"),  # type: ignore
            system_prompt=os.getenv("SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            timeout=float(_getenv("LLM_TIMEOUT", "60")),
            openai=OpenAIConfig(
                api_key=_getenv("OPENAI_API_KEY", ""),
                model=_getenv("OPENAI_MODEL", "gpt-4o"),
                temperature=float(_getenv("OPENAI_TEMPERATURE", "0.7")),
            ),
            ollama=OllamaConfig(
                base_url=_getenv("OLLAMA_URL", "http://localhost:11434"),
                model=_getenv("OLLAMA_MODEL", "llama3"),
                temperature=float(_getenv("OLLAMA_TEMPERATURE", "0.7")),
                api_key=_getenv("OLLAMA_API_KEY", ""),
            ),
        )

        retrieval = RetrievalConfig(
            min_sim_score=float(_getenv("MIN_SIM_SCORE", "0.0")),
            search_url=os.getenv("RAG_SEARCH_URL") or None,
            api_key=os.getenv("RAG_API_KEY") or None,
            timeout=float(_getenv("RAG_TIMEOUT", "60")),
        )

        storage = StorageConfig(
            backend=_getenv("SESSION_BACKEND", "memory"),  # type: ignore
            session_dir=_getenv("SESSION_DIR", "./data/sessions"),
            mongodb_uri=os.getenv("MONGODB_URI") or None,
            mongodb_database=_getenv("MONGODB_DATABASE", "rag_chat"),
            mongodb_collection=_getenv("MONGODB_COLLECTION", "chat_history"),
        )

        server = ServerConfig(
            host=_getenv("CHAT_HOST", "127.0.0.1"),
            port=int(_getenv("CHAT_PORT", "8000")),
            nonce_secret=_getenv("NONCE_SECRET", "change-me"),
            nonce_lifetime=int(_getenv("NONCE_LIFETIME", "86400")),
        )

        return cls(
            llm=llm,
            retrieval=retrieval,
            storage=storage,
            server=server,
            log_level=_getenv("LOG_LEVEL", "INFO"),
        )


# Singleton pattern for settings
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the singleton Settings instance.

    Returns:
        Settings: The application settings loaded from environment.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from environment (useful for testing).

    Returns:
        Settings: Fresh settings instance.
    """
    global _settings
    load_dotenv(override=True)
    _settings = Settings.from_env()
    return _settings
