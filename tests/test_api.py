"""
Test suite for the chat HTTP API.

Tests the four chat operations, the nonce check and error mapping with
FastAPI TestClient. The LLM and RAG collaborators are mocked.
"""

import pytest
from unittest.mock import Mock

from fastapi.testclient import TestClient

from config.settings import LLMConfig, OpenAIConfig, Settings
from ragchat.api import create_app
from ragchat.exceptions import ProviderError
from ragchat.llm_service import LLMResponse, LLMService
from ragchat.rag_client import RAGClient, SearchResult
from ragchat.session_store import InMemoryBackend, SessionStore

USER = "42"


@pytest.fixture
def settings() -> Settings:
    settings = Settings()
    settings.server.nonce_secret = "test-secret"
    return settings


@pytest.fixture
def store() -> SessionStore:
    return SessionStore(backend=InMemoryBackend())


@pytest.fixture
def mock_rag_client():
    client = Mock(spec=RAGClient)
    client.search.return_value = []
    return client


@pytest.fixture
def mock_llm_service():
    llm = Mock(spec=LLMService)
    llm.provider_name = "openai"
    llm.complete.return_value = LLMResponse(content="Paris.", model="gpt-4o")
    return llm


@pytest.fixture
def client(settings, store, mock_rag_client, mock_llm_service) -> TestClient:
    app = create_app(
        settings=settings,
        store=store,
        rag_client=mock_rag_client,
        llm_service=mock_llm_service,
    )
    return TestClient(app)


@pytest.fixture
def headers(client) -> dict:
    """Identity and a valid nonce for USER."""
    nonce = client.get("/chat/nonce", headers={"X-User-Id": USER}).json()["nonce"]
    return {"X-User-Id": USER, "X-Chat-Nonce": nonce}


class TestAuthAndNonce:
    """Identity and anti-forgery checks."""

    def test_nonce_requires_user(self, client):
        response = client.get("/chat/nonce")
        assert response.status_code == 401
        assert response.json()["detail"] == "User not logged in"

    def test_missing_nonce_rejected(self, client):
        response = client.get("/chat/history", headers={"X-User-Id": USER})
        assert response.status_code == 403

    def test_nonce_of_other_user_rejected(self, client, headers):
        response = client.post("/chat/new", headers={**headers, "X-User-Id": "intruder"})
        assert response.status_code == 403

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "provider": "openai"}


class TestChatOperations:
    """Tests for history, new chat, send and delete."""

    def test_new_chat_and_history(self, client, headers):
        chat_id = client.post("/chat/new", headers=headers).json()["chat_id"]

        history = client.get("/chat/history", headers=headers).json()

        assert list(history) == [chat_id]
        assert history[chat_id]["title"] == "New Chat"
        assert history[chat_id]["messages"] == []

    def test_open_creates_when_empty(self, client, headers, store):
        chat_id = client.post("/chat/open", headers=headers).json()["chat_id"]
        assert list(store.list_sessions(USER)) == [chat_id]

    def test_send_message(self, client, headers, store, mock_rag_client):
        mock_rag_client.search.return_value = [
            SearchResult(score=0.9, text="Paris is the capital.", source_url="https://geo", title="Geo"),
        ]
        chat_id = store.create_session(USER)

        response = client.post(
            "/chat/send",
            headers=headers,
            json={
                "message": "What is the capital of France?",
                "chat_id": chat_id,
                "restricted_post_types": '["page", "post"]',
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "assistant"
        assert data["content"] == "Paris."
        assert data["sources"] == [{"url": "https://geo", "title": "Geo", "score": 0.9}]
        assert isinstance(data["timestamp"], int)
        assert mock_rag_client.search.call_args.kwargs["content_types"] == ["page", "post"]

        session = store.list_sessions(USER)[chat_id]
        assert session.title == "What is the capital of France?"
        assert len(session.messages) == 2

    def test_history_includes_augmented_content(self, client, headers, store):
        chat_id = store.create_session(USER)
        client.post("/chat/send", headers=headers, json={"message": "Hello", "chat_id": chat_id})

        history = client.get("/chat/history", headers=headers).json()
        user_msg = history[chat_id]["messages"][0]

        assert user_msg == {
            "role": "user",
            "content": "Hello",
            "augmented_content": "Hello",
            "timestamp": user_msg["timestamp"],
        }

    def test_empty_message(self, client, headers, store):
        chat_id = store.create_session(USER)

        response = client.post("/chat/send", headers=headers, json={"message": "  ", "chat_id": chat_id})

        assert response.status_code == 400
        assert response.json()["detail"] == "Message cannot be empty"

    def test_provider_error_reported_and_nothing_stored(self, client, headers, store, mock_llm_service):
        mock_llm_service.complete.side_effect = ProviderError("connection refused", provider="ollama")
        chat_id = store.create_session(USER)

        response = client.post("/chat/send", headers=headers, json={"message": "Hi", "chat_id": chat_id})

        assert response.status_code == 502
        assert "connection refused" in response.json()["detail"]
        assert store.list_sessions(USER)[chat_id].messages == []

    def test_delete_active_selects_another(self, client, headers, store):
        first = store.create_session(USER)
        second = store.create_session(USER)

        response = client.post(
            "/chat/delete",
            headers=headers,
            json={"chat_id": second, "active_chat_id": second},
        )

        assert response.json() == {"success": True, "active_chat_id": first}
        assert list(store.list_sessions(USER)) == [first]

    def test_delete_last_creates_fresh(self, client, headers, store):
        only = store.create_session(USER)

        data = client.post(
            "/chat/delete",
            headers=headers,
            json={"chat_id": only, "active_chat_id": only},
        ).json()

        assert data["success"] is True
        assert data["active_chat_id"] != only
        assert list(store.list_sessions(USER)) == [data["active_chat_id"]]

    def test_delete_missing_chat_succeeds(self, client, headers, store):
        active = store.create_session(USER)

        data = client.post(
            "/chat/delete",
            headers=headers,
            json={"chat_id": "chat_missing", "active_chat_id": active},
        ).json()

        assert data == {"success": True, "active_chat_id": active}


class TestHostedWithoutKey:
    """A real LLMService with the hosted provider and no API key."""

    def test_configuration_error_and_no_mutation(self, settings, store, mock_rag_client):
        settings.llm = LLMConfig(provider="openai", openai=OpenAIConfig(api_key=""))
        client = TestClient(create_app(settings=settings, store=store, rag_client=mock_rag_client))
        nonce = client.get("/chat/nonce", headers={"X-User-Id": USER}).json()["nonce"]
        chat_id = store.create_session(USER)

        response = client.post(
            "/chat/send",
            headers={"X-User-Id": USER, "X-Chat-Nonce": nonce},
            json={"message": "Hello", "chat_id": chat_id},
        )

        assert response.status_code == 500
        assert response.json()["detail"] == "OpenAI API Key is missing"
        session = store.list_sessions(USER)[chat_id]
        assert session.messages == []
        assert session.title == "New Chat"
