"""
Anti-forgery tokens for the chat request surface.

A token is an HMAC over (action, user ID, tick). The tick advances every half
lifetime and a token from the current or the previous tick is accepted, so a
token stays valid for between half and one full lifetime.
"""

import hashlib
import hmac
import math
import time
from typing import Optional

NONCE_ACTION = "rag_chat"
NONCE_LENGTH = 20


class NonceManager:
    """Creates and verifies anti-forgery tokens tied to a user."""

    def __init__(self, secret: str, lifetime: int = 86400, action: str = NONCE_ACTION):
        if not secret:
            raise ValueError("Nonce secret must not be empty")
        if lifetime < 2:
            raise ValueError(f"Nonce lifetime must be at least 2 seconds, got {lifetime}")
        self._secret = secret.encode("utf-8")
        self.lifetime = lifetime
        self.action = action

    def _tick(self, at: Optional[float] = None) -> int:
        at = time.time() if at is None else at
        return math.ceil(at / (self.lifetime / 2))

    def _digest(self, user_id: str, tick: int) -> str:
        message = f"{self.action}|{user_id}|{tick}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()[:NONCE_LENGTH]

    def create(self, user_id: str, at: Optional[float] = None) -> str:
        """Create a token for a user."""
        return self._digest(str(user_id), self._tick(at))

    def verify(self, user_id: str, nonce: Optional[str], at: Optional[float] = None) -> bool:
        """Check a token against the current and previous tick."""
        if not nonce or not user_id:
            return False
        tick = self._tick(at)
        for candidate in (tick, tick - 1):
            if hmac.compare_digest(self._digest(str(user_id), candidate), nonce):
                return True
        return False
