"""
Chat HTTP API.

Routes:
- GET  /chat/nonce    - Anti-forgery token for the caller
- GET  /chat/history  - All of the caller's sessions
- POST /chat/new      - Create a session
- POST /chat/open     - Most recent session, created when none exist
- POST /chat/send     - Send a message and get the assistant reply
- POST /chat/delete   - Delete a session and get the next active one
- GET  /health        - Liveness and configured provider

Authentication is delegated to the host in front of this service: it must
set the X-User-Id header. Every /chat route except /chat/nonce also requires
a token from /chat/nonce in the X-Chat-Nonce header.
"""

import logging
from typing import Dict, List, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config.settings import get_settings, Settings
from ragchat.exceptions import (
    ChatError,
    ConfigurationError,
    EmptyMessage,
    NotAuthenticated,
    ProviderError,
)
from ragchat.llm_service import LLMService
from ragchat.nonce import NonceManager
from ragchat.orchestrator import ConversationOrchestrator, parse_content_types
from ragchat.rag_client import RAGClient
from ragchat.session_store import SessionStore, create_backend

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotAuthenticated: 401,
    EmptyMessage: 400,
    ConfigurationError: 500,
    ProviderError: 502,
}


class SendMessageRequest(BaseModel):
    message: str = ""
    chat_id: str
    # List of content types, or the same list JSON-encoded
    restricted_post_types: Optional[Union[List[str], str]] = None


class DeleteChatRequest(BaseModel):
    chat_id: str
    active_chat_id: Optional[str] = None


class SourceModel(BaseModel):
    url: str
    title: str
    score: float


class AssistantReply(BaseModel):
    role: str = "assistant"
    content: str
    sources: List[SourceModel] = Field(default_factory=list)
    timestamp: int


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity as forwarded by the authenticating host."""
    if not x_user_id:
        raise NotAuthenticated()
    return x_user_id


def verify_nonce(
    request: Request,
    user_id: str = Depends(get_user_id),
    x_chat_nonce: Optional[str] = Header(default=None),
) -> str:
    """Reject requests without a valid anti-forgery token for this user."""
    nonces: NonceManager = request.app.state.nonces
    if not nonces.verify(user_id, x_chat_nonce):
        logger.warning(f"Rejected request with invalid nonce for user {user_id}")
        raise HTTPException(status_code=403, detail="Invalid security token")
    return user_id


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    status_code = 500
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    rag_client: Optional[RAGClient] = None,
    llm_service: Optional[LLMService] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Collaborators not passed in are built from settings.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    store = store or SessionStore(create_backend(settings.storage))
    rag_client = rag_client or RAGClient.from_settings(settings.retrieval)
    llm_service = llm_service or LLMService(config=settings.llm)

    app = FastAPI(
        title="RAG Chat API",
        description="Chat sessions with retrieval-augmented LLM replies",
        version="1.0.0",
    )
    app.state.store = store
    app.state.llm_service = llm_service
    app.state.nonces = NonceManager(
        secret=settings.server.nonce_secret,
        lifetime=settings.server.nonce_lifetime,
    )
    app.state.orchestrator = ConversationOrchestrator(
        store=store,
        rag_client=rag_client,
        llm_service=llm_service,
        system_prompt=settings.llm.system_prompt,
        min_sim_score=settings.retrieval.min_sim_score,
        search_limit=settings.retrieval.limit,
    )
    app.add_exception_handler(ChatError, chat_error_handler)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok", "provider": llm_service.provider_name}

    @app.get("/chat/nonce")
    def get_nonce(user_id: str = Depends(get_user_id)) -> Dict[str, str]:
        return {"nonce": app.state.nonces.create(user_id)}

    @app.get("/chat/history")
    def get_history(user_id: str = Depends(verify_nonce)) -> Dict[str, dict]:
        sessions = store.list_sessions(user_id)
        return {chat_id: session.to_dict() for chat_id, session in sessions.items()}

    @app.post("/chat/new")
    def new_chat(user_id: str = Depends(verify_nonce)) -> Dict[str, str]:
        return {"chat_id": store.create_session(user_id)}

    @app.post("/chat/open")
    def open_chat(user_id: str = Depends(verify_nonce)) -> Dict[str, str]:
        return {"chat_id": store.open_session(user_id)}

    @app.post("/chat/send", response_model=AssistantReply)
    def send_message(
        body: SendMessageRequest,
        user_id: str = Depends(verify_nonce),
    ) -> AssistantReply:
        """
        Send a chat message.

        Raises:
            EmptyMessage (400), ConfigurationError (500), ProviderError (502)
        """
        reply = app.state.orchestrator.handle_user_message(
            user_id=user_id,
            session_id=body.chat_id,
            raw_message=body.message,
            content_types=parse_content_types(body.restricted_post_types),
        )
        return AssistantReply(
            content=reply.content,
            sources=[SourceModel(**s.to_dict()) for s in reply.sources or []],
            timestamp=reply.timestamp,
        )

    @app.post("/chat/delete")
    def delete_chat(
        body: DeleteChatRequest,
        user_id: str = Depends(verify_nonce),
    ) -> Dict[str, Union[bool, str]]:
        active = store.delete_and_select(user_id, body.chat_id, body.active_chat_id)
        return {"success": True, "active_chat_id": active}

    logger.info(f"Chat API created with {llm_service.provider_name} provider")
    return app
