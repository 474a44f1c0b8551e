"""
Server-side session storage for moodmix.

A session is identified by an opaque id carried in a cookie and holds the
user's Spotify token pair. Stores are keyed (session id -> Session) so the
request pipeline never cares where sessions live.

Refreshes for the same session are not serialized: two concurrent protected
requests may both exchange the same refresh token, and the last write wins.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

from .config import SessionConfig, get_default_config_dir

logger = logging.getLogger(__name__)


@dataclass
class Session:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def logged_in(self) -> bool:
        return bool(self.access_token)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore(ABC):
    """Keyed token store. Subclasses implement load/save/delete."""

    @abstractmethod
    def load(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    def save(self, session_id: str, session: Session) -> None:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        ...

    def create(self) -> str:
        session_id = new_session_id()
        self.save(session_id, Session())
        logger.debug(f"Created session {session_id[:8]}...")
        return session_id

    def get(self, session_id: str) -> Session:
        return self.load(session_id) or Session()

    def set_tokens(self, session_id: str, access_token: str, refresh_token: Optional[str]) -> None:
        self.save(session_id, Session(access_token=access_token, refresh_token=refresh_token))

    def update_access_token(self, session_id: str, access_token: str) -> None:
        session = self.get(session_id)
        session.access_token = access_token
        self.save(session_id, session)

    def clear_tokens(self, session_id: str) -> None:
        # An empty session is indistinguishable from an unknown one.
        self.delete(session_id)


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            # Hand out copies so callers only mutate through the store.
            return Session(**asdict(session)) if session else None

    def save(self, session_id: str, session: Session) -> None:
        with self._lock:
            self._sessions[session_id] = Session(**asdict(session))

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class FileSessionStore(SessionStore):
    """
    Stores each session as a JSON file under the moodmix config directory,
    so sessions survive a server restart.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._dir = directory or get_default_config_dir() / "sessions"

    def _path(self, session_id: str) -> Path:
        self._dir.mkdir(parents=True, exist_ok=True)
        safe_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in session_id)
        return self._dir / f"{safe_id}.json"

    def load(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(f"Unreadable session file {path.name}: {exc}")
            return None
        return Session(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
        )

    def save(self, session_id: str, session: Session) -> None:
        path = self._path(session_id)
        with path.open("w", encoding="utf-8") as f:
            json.dump(asdict(session), f)

    def delete(self, session_id: str) -> None:
        try:
            self._path(session_id).unlink()
        except FileNotFoundError:
            pass


def build_session_store(cfg: SessionConfig) -> SessionStore:
    if cfg.backend == "file":
        logger.info("Using file-backed session store")
        return FileSessionStore()
    if cfg.backend != "memory":
        logger.warning(f"Unknown session backend {cfg.backend!r}, falling back to memory")
    return InMemorySessionStore()


__all__ = [
    "FileSessionStore",
    "InMemorySessionStore",
    "Session",
    "SessionStore",
    "build_session_store",
    "new_session_id",
]
