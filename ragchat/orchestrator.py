"""
Conversation Orchestrator Module

Runs the send-message pipeline:
1. Sanitize the message
2. Retrieve context from the RAG service
3. Build the augmented message
4. Replay the session history plus the new turn to the LLM
5. Persist the user turn, then the assistant turn
6. Return the assistant turn

Nothing is persisted when the LLM call fails. If storing the assistant turn
fails after the user turn was stored, the session is left with a user turn
that has no reply; that error propagates unchanged.

Pipeline Flow:
    Message → Sanitize → RAG Search → Score Filter → Context Block
    → [System, History..., Augmented Message] → LLM → Persist x2 → Reply
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Dict, Sequence

from config.settings import get_settings, DEFAULT_SYSTEM_PROMPT
from ragchat.exceptions import EmptyMessage, NotAuthenticated
from ragchat.llm_service import LLMService
from ragchat.models import Message, Source, ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, now
from ragchat.rag_client import RAGClient, SearchResult
from ragchat.session_store import SessionStore

logger = logging.getLogger(__name__)

CONTEXT_DELIMITER = (
    "\n\n---\n\n"
    "In order to help you reply to the user's message, here is some additional "
    "information that is contextually relevant:\n\n"
)

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[A-Za-z!][^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class RetrievedContext:
    """
    Context built from the retrieval results that cleared the score threshold.

    Attributes:
        text: Numbered context block ("" when nothing was kept)
        sources: Kept sources, deduplicated by URL in first-seen order
    """
    text: str = ""
    sources: List[Source] = field(default_factory=list)


def sanitize_message(raw: Optional[str]) -> str:
    """
    Clean a raw user message.

    Script and style elements are dropped with their content, other HTML
    tags are removed and control characters become spaces. A "<" or ">"
    that does not open a tag is kept. Whitespace runs collapse to a single
    space and the ends are trimmed.
    """
    if not raw:
        return ""
    text = _SCRIPT_STYLE_RE.sub("", raw)
    text = _TAG_RE.sub("", text)
    text = _CONTROL_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def parse_content_types(value: Any) -> List[str]:
    """
    Parse a content-type restriction from a request.

    Accepts a list of strings or a JSON-encoded list. Anything else means
    "no restriction".
    """
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if v]


def build_context(results: Sequence[SearchResult], min_score: float = 0.0) -> RetrievedContext:
    """
    Build the context block and source list from search results.

    Results scoring below min_score are dropped. Numbering counts kept
    results only, starting at 1.
    """
    parts = []
    sources = []
    seen_urls = set()

    for result in results:
        if result.score < min_score:
            continue

        i = len(parts) + 1
        parts.append(
            f"Source {i} URL: {result.source_url}\n"
            f"Source {i} Content: {result.text}\n--\n\n"
        )

        if result.source_url not in seen_urls:
            seen_urls.add(result.source_url)
            sources.append(Source(url=result.source_url, title=result.title, score=result.score))

    return RetrievedContext(text="".join(parts), sources=sources)


def build_augmented_content(message: str, context_text: str) -> str:
    """Append the context block to the message; unchanged when there is no context."""
    if not context_text:
        return message
    return "User Message:\n" + message + CONTEXT_DELIMITER + context_text


def build_llm_messages(
    system_prompt: str,
    history: Sequence[Message],
    augmented_content: str,
) -> List[Dict[str, str]]:
    """
    Build the provider-bound message list.

    Every prior turn is replayed with what was originally sent to the LLM,
    not with what was displayed.
    """
    messages = [{"role": ROLE_SYSTEM, "content": system_prompt or DEFAULT_SYSTEM_PROMPT}]
    for msg in history:
        messages.append({"role": msg.role, "content": msg.llm_content()})
    messages.append({"role": ROLE_USER, "content": augmented_content})
    return messages


class ConversationOrchestrator:
    """
    Combines retrieval, stored history and the LLM into one chat turn.

    Example:
        orchestrator = ConversationOrchestrator(
            store=SessionStore(),
            rag_client=RAGClient.from_settings(),
            llm_service=LLMService(),
        )
        reply = orchestrator.handle_user_message("42", chat_id, "Hello")
        print(reply.content)
    """

    def __init__(
        self,
        store: SessionStore,
        rag_client: RAGClient,
        llm_service: LLMService,
        system_prompt: Optional[str] = None,
        min_sim_score: Optional[float] = None,
        search_limit: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Session persistence
            rag_client: Retrieval client
            llm_service: LLM dispatch
            system_prompt: Custom system prompt
            min_sim_score: Minimum retrieval score to keep a result
            search_limit: Number of results to request
        """
        settings = get_settings()

        self.store = store
        self.rag_client = rag_client
        self.llm_service = llm_service

        self.system_prompt = system_prompt or settings.llm.system_prompt
        self.min_sim_score = (
            min_sim_score if min_sim_score is not None else settings.retrieval.min_sim_score
        )
        self.search_limit = search_limit or settings.retrieval.limit

        logger.info(
            f"ConversationOrchestrator initialized: min_sim_score={self.min_sim_score}, "
            f"limit={self.search_limit}"
        )

    def retrieve_context(
        self,
        query: str,
        content_types: Optional[Sequence[str]] = None,
    ) -> RetrievedContext:
        """Search the RAG service and build the context for a query."""
        results = self.rag_client.search(query, limit=self.search_limit, content_types=content_types)
        context = build_context(results, self.min_sim_score)
        logger.debug(
            f"Kept {len(context.sources)} sources from {len(results)} results "
            f"(min_sim_score={self.min_sim_score})"
        )
        return context

    def handle_user_message(
        self,
        user_id: Optional[str],
        session_id: str,
        raw_message: Optional[str],
        content_types: Optional[Sequence[str]] = None,
    ) -> Message:
        """
        Process one user turn.

        Args:
            user_id: Caller identity
            session_id: Target chat session
            raw_message: Message as typed by the user
            content_types: Optional content-type restriction for retrieval

        Returns:
            The persisted assistant Message

        Raises:
            NotAuthenticated: No user identity
            EmptyMessage: Nothing left after sanitizing
            ConfigurationError: LLM provider is misconfigured
            ProviderError: LLM call failed
        """
        if not user_id:
            raise NotAuthenticated()

        message = sanitize_message(raw_message)
        if not message:
            raise EmptyMessage()

        start_time = time.time()

        # Step 1: Retrieve context
        context = self.retrieve_context(message, content_types)

        # Step 2: Build augmented message
        augmented_content = build_augmented_content(message, context.text)

        # Step 3: Replay history plus the new turn
        sessions = self.store.list_sessions(user_id)
        history = sessions[session_id].messages if session_id in sessions else []
        llm_messages = build_llm_messages(self.system_prompt, history, augmented_content)

        # Step 4: Call the LLM; failures propagate before anything is stored
        llm_response = self.llm_service.complete(llm_messages)

        # Step 5: Persist user turn, then assistant turn
        self.store.append_message(
            user_id,
            session_id,
            Message(
                role=ROLE_USER,
                content=message,
                augmented_content=augmented_content,
                timestamp=now(),
            ),
        )

        reply = Message(
            role=ROLE_ASSISTANT,
            content=llm_response.content,
            sources=context.sources,
            timestamp=now(),
        )
        self.store.append_message(user_id, session_id, reply)

        logger.info(
            f"Chat turn completed in {time.time() - start_time:.2f}s "
            f"(session={session_id}, history={len(history)}, sources={len(context.sources)})"
        )
        return reply
