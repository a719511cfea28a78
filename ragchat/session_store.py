"""
Session Store Module

Persists chat sessions per user as one flat mapping of
session_id -> session dict, loaded and stored as a whole.

Backends:
- memory: process-local dict (default, development and tests)
- json: one JSON file per user on local disk
- mongodb: one document per user in a MongoDB collection

Every mutation is a read-modify-write of the user's full mapping. There is
no locking and no optimistic concurrency token, so two concurrent appends for
the same user can lose an update: the later write replaces the mapping the
earlier one stored.

Usage:
    store = SessionStore()
    chat_id = store.create_session("42")
    store.append_message("42", chat_id, Message(role="user", content="Hi"))
    sessions = store.list_sessions("42")
"""

import copy
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Dict, Any

from config.settings import get_settings, StorageConfig
from ragchat.exceptions import ConfigurationError, NotAuthenticated
from ragchat.models import ChatSession, Message

logger = logging.getLogger(__name__)


class BaseSessionBackend(ABC):
    """
    Abstract storage for a user's chat mapping.

    The mapping is opaque to backends: they load and save it whole.
    """

    @abstractmethod
    def load(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        """Return the user's full session mapping (empty dict when none)."""
        pass

    @abstractmethod
    def save(self, user_id: str, chats: Dict[str, Dict[str, Any]]) -> None:
        """Replace the user's full session mapping."""
        pass


class InMemoryBackend(BaseSessionBackend):
    """Process-local backend. Copies on load and save so callers never share state."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def load(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._data.get(user_id, {}))

    def save(self, user_id: str, chats: Dict[str, Dict[str, Any]]) -> None:
        self._data[user_id] = copy.deepcopy(chats)


class JSONFileBackend(BaseSessionBackend):
    """
    Stores each user's mapping in its own JSON file.

    File names are a hash of the user ID so arbitrary IDs are safe on disk.
    """

    def __init__(self, directory: Optional[str] = None):
        config = get_settings().storage
        self.directory = Path(directory or config.session_dir)
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"JSONFileBackend initialized: dir={self.directory}")

    def _path(self, user_id: str) -> Path:
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    def load(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        path = self._path(user_id)
        if not path.exists():
            return {}
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, user_id: str, chats: Dict[str, Dict[str, Any]]) -> None:
        path = self._path(user_id)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(chats, f, ensure_ascii=False)
        tmp_path.replace(path)


class MongoDBBackend(BaseSessionBackend):
    """
    Stores each user's mapping as one MongoDB document:

        {"_id": <user_id>, "chats": {<session_id>: {...}, ...}}
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        database: Optional[str] = None,
        collection: Optional[str] = None,
        config: Optional[StorageConfig] = None,
    ):
        config = config or get_settings().storage

        self.uri = uri or config.mongodb_uri
        self.database_name = database or config.mongodb_database
        self.collection_name = collection or config.mongodb_collection

        self._client = None
        self._collection = None

        logger.info(
            f"MongoDBBackend initialized: db={self.database_name}, "
            f"collection={self.collection_name}"
        )

    def _connect(self):
        """Establish connection to MongoDB."""
        if self._collection is not None:
            return

        if not self.uri:
            raise ConfigurationError(
                "MongoDB URI not configured. Set MONGODB_URI environment variable."
            )

        try:
            from pymongo import MongoClient
        except ImportError:
            raise ImportError(
                "pymongo is required for MongoDB. "
                "Install with: pip install 'pymongo[srv]'"
            )

        self._client = MongoClient(self.uri)
        self._collection = self._client[self.database_name][self.collection_name]
        logger.info("Connected to MongoDB")

    def load(self, user_id: str) -> Dict[str, Dict[str, Any]]:
        self._connect()
        doc = self._collection.find_one({"_id": user_id})
        if not doc:
            return {}
        return doc.get("chats", {})

    def save(self, user_id: str, chats: Dict[str, Dict[str, Any]]) -> None:
        self._connect()
        self._collection.replace_one(
            {"_id": user_id},
            {"_id": user_id, "chats": chats},
            upsert=True,
        )


def create_backend(config: Optional[StorageConfig] = None) -> BaseSessionBackend:
    """Build the backend named by the storage configuration."""
    config = config or get_settings().storage

    if config.backend == "memory":
        return InMemoryBackend()
    elif config.backend == "json":
        return JSONFileBackend(directory=config.session_dir)
    elif config.backend == "mongodb":
        return MongoDBBackend(config=config)
    raise ConfigurationError(f"Unknown session backend: {config.backend}")


class SessionStore:
    """
    Per-user collection of chat sessions.

    Pure data access: the only rule it applies itself is the title rule in
    ChatSession.append.
    """

    def __init__(self, backend: Optional[BaseSessionBackend] = None):
        self._backend = backend or create_backend()
        logger.info(f"SessionStore initialized with {type(self._backend).__name__}")

    @staticmethod
    def _require_user(user_id: Optional[str]) -> str:
        if not user_id:
            raise NotAuthenticated()
        return str(user_id)

    def list_sessions(self, user_id: str) -> Dict[str, ChatSession]:
        """
        Get all sessions for a user.

        Returns:
            Mapping of session ID to ChatSession
        """
        user_id = self._require_user(user_id)
        chats = self._backend.load(user_id)
        return {chat_id: ChatSession.from_dict(data) for chat_id, data in chats.items()}

    def sorted_sessions(self, user_id: str) -> List[ChatSession]:
        """Get a user's sessions, newest first."""
        sessions = self.list_sessions(user_id).values()
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def most_recent_session_id(self, user_id: str) -> Optional[str]:
        sessions = self.sorted_sessions(user_id)
        return sessions[0].id if sessions else None

    def create_session(self, user_id: str) -> str:
        """
        Create a new empty session.

        Returns:
            The new session ID
        """
        user_id = self._require_user(user_id)
        chats = self._backend.load(user_id)

        session = ChatSession.new()
        chats[session.id] = session.to_dict()
        self._backend.save(user_id, chats)

        logger.info(f"Created session {session.id} for user {user_id}")
        return session.id

    def append_message(self, user_id: str, session_id: str, message: Message) -> None:
        """
        Append a message to a session.

        The session is created on the fly if it does not exist; the normal
        flow always creates it first.
        """
        user_id = self._require_user(user_id)
        chats = self._backend.load(user_id)

        if session_id in chats:
            session = ChatSession.from_dict(chats[session_id])
        else:
            logger.warning(f"Session {session_id} not found for user {user_id}, creating it")
            session = ChatSession.new(session_id)

        session.append(message)
        chats[session_id] = session.to_dict()
        self._backend.save(user_id, chats)

        logger.debug(f"Appended {message.role} message to {session_id}")

    def delete_session(self, user_id: str, session_id: str) -> None:
        """Delete a session. Missing sessions are ignored."""
        user_id = self._require_user(user_id)
        chats = self._backend.load(user_id)

        if session_id in chats:
            del chats[session_id]
            self._backend.save(user_id, chats)
            logger.info(f"Deleted session {session_id} for user {user_id}")

    def open_session(self, user_id: str) -> str:
        """
        Pick the session to show when the chat is opened.

        Returns the most recent session, creating one when the user has none.
        """
        session_id = self.most_recent_session_id(user_id)
        if session_id is None:
            session_id = self.create_session(user_id)
        return session_id

    def delete_and_select(
        self,
        user_id: str,
        session_id: str,
        active_session_id: Optional[str] = None,
    ) -> str:
        """
        Delete a session and return the session that should be active next.

        Deleting a session other than the active one keeps the active one.
        Deleting the active session (or when no active session is known)
        selects the newest remaining session, or a fresh one when none remain.
        """
        self.delete_session(user_id, session_id)

        if active_session_id and active_session_id != session_id:
            return active_session_id

        return self.open_session(user_id)
