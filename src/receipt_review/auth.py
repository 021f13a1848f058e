"""
Signed-in session context.

The workflow holds no authentication state of its own. A SessionContext is
created by the caller, passed to the API clients at construction, and has an
explicit lifecycle: load() from disk, save() after sign-in, clear() on
sign-out or when the backend answers 401.
"""

import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class AuthenticationRequired(Exception):
    """The backend rejected the credentials; the user must sign in again."""

    def __init__(self, message: str = "Authentication required"):
        self.message = message
        super().__init__(message)


class SessionContext:
    """
    Bearer token and user profile for the current reviewer.

    Persistence is a small JSON file ({"token": ..., "user": {...}}).
    A context built without a file lives only in memory.
    """

    def __init__(self, session_file: Optional[Path] = None, token: Optional[str] = None):
        self.session_file = session_file
        self.token: Optional[str] = token
        self.user: Optional[dict] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def load(self) -> bool:
        """
        Load token and user from the session file.

        Returns:
            True if a stored session was found
        """
        if self.session_file is None or not self.session_file.exists():
            return False

        try:
            with open(self.session_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.session_file, e)
            return False

        token = data.get("token")
        if not token:
            return False

        self.token = token
        self.user = data.get("user")
        logger.debug("Loaded session for %s", (self.user or {}).get("email", "unknown user"))
        return True

    def save(self, token: str, user: Optional[dict] = None) -> None:
        """Store a new session in memory and, if configured, on disk."""
        self.token = token
        self.user = user

        if self.session_file is None:
            return

        self.session_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.session_file, "w") as f:
            json.dump({"token": token, "user": user}, f)

    def clear(self) -> None:
        """Forget the session in memory and remove the session file."""
        self.token = None
        self.user = None

        if self.session_file is not None and self.session_file.exists():
            self.session_file.unlink()
            logger.info("Cleared stored session")

    def auth_headers(self) -> dict[str, str]:
        """Authorization header for API calls (empty when signed out)."""
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}
