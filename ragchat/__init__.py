"""
RAG Chat - Core Source Module

This module contains the chat service components:
- SessionStore: Per-user chat session persistence (memory/JSON/MongoDB)
- RAGClient: Adapter around the external RAG search service
- LLMService: LLM provider abstraction (OpenAI/Ollama)
- ConversationOrchestrator: Retrieval + history + LLM for one chat turn
- api.create_app: FastAPI request surface
"""

from .exceptions import (
    ChatError,
    NotAuthenticated,
    EmptyMessage,
    ConfigurationError,
    RetrievalUnavailable,
    ProviderError,
)
from .models import ChatSession, Message, Source
from .session_store import SessionStore
from .rag_client import RAGClient, SearchResult, HTTPSearchBackend
from .llm_service import LLMService, LLMResponse
from .orchestrator import ConversationOrchestrator

__all__ = [
    # Errors
    "ChatError",
    "NotAuthenticated",
    "EmptyMessage",
    "ConfigurationError",
    "RetrievalUnavailable",
    "ProviderError",
    # Data model
    "ChatSession",
    "Message",
    "Source",
    # Components
    "SessionStore",
    "RAGClient",
    "SearchResult",
    "HTTPSearchBackend",
    "LLMService",
    "LLMResponse",
    "ConversationOrchestrator",
]
