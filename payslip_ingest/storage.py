"""
Durable storage of upload sessions.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from filelock import FileLock, Timeout

from .config import SESSION_LOCK_TIMEOUT, SESSION_STORE_DIR
from .exceptions import ConcurrentModification, PersistenceError
from .models import SessionStatus, UploadSession

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """
    Abstract base class for session persistence.

    This defines the access contract the lifecycle manager relies on.
    Every ``put`` is a compare-and-set on the session ``version`` when an
    expected version is given, so a writer holding stale state loses
    instead of silently overwriting a newer record.
    """

    @classmethod
    def create(cls, store_type: str, config: Dict[str, Any] = None) -> "SessionStore":
        """
        Factory method to create a SessionStore instance.

        Args:
            store_type: Type of store ('memory' or 'json')
            config: Configuration parameters for the store
                directory: Folder holding one JSON file per session ('json' only)
                lock_timeout: Seconds to wait for a writer lock ('json' only)

        Returns:
            SessionStore instance
        """
        config = config or {}
        if store_type.lower() == "memory":
            return InMemorySessionStore()
        elif store_type.lower() == "json":
            return JsonFileSessionStore(
                config.get("directory", SESSION_STORE_DIR),
                lock_timeout=config.get("lock_timeout"),
            )
        else:
            raise ValueError(f"Unsupported session store type: {store_type}")

    @abstractmethod
    def get(self, session_id: str) -> Optional[UploadSession]:
        """
        Load a session.

        Args:
            session_id: Id of the session

        Returns:
            A private copy of the stored session, or None when absent
        """
        pass

    @abstractmethod
    def put(self, session: UploadSession, expected_version: Optional[int] = None) -> UploadSession:
        """
        Store a session.

        Args:
            session: Session to write
            expected_version: Version the caller read; None writes unconditionally

        Returns:
            The stored copy, with its version bumped
        """
        pass

    @abstractmethod
    def list_sessions(self, user_id: Optional[str] = None) -> List[UploadSession]:
        """
        List stored sessions, optionally for one user, oldest first.
        """
        pass

    def list_active_sessions(self, user_id: str) -> List[UploadSession]:
        """
        Sessions of a user that may still need work.

        A session qualifies when it is active, failed, or has pending files.
        """
        return [
            s for s in self.list_sessions(user_id)
            if s.status in (SessionStatus.ACTIVE, SessionStatus.FAILED) or s.pending_files > 0
        ]

    @staticmethod
    def _check_version(session_id: str, stored: Optional[UploadSession], expected_version: Optional[int]):
        if expected_version is None:
            return
        actual = stored.version if stored is not None else 0
        if actual != expected_version:
            raise ConcurrentModification(session_id, expected_version, actual)


class InMemorySessionStore(SessionStore):
    """Process-local store, used for tests and short-lived runs."""

    def __init__(self):
        self._sessions: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[UploadSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    def put(self, session: UploadSession, expected_version: Optional[int] = None) -> UploadSession:
        with self._lock:
            self._check_version(session.session_id, self._sessions.get(session.session_id), expected_version)
            stored = copy.deepcopy(session)
            stored.version += 1
            self._sessions[stored.session_id] = stored
            return copy.deepcopy(stored)

    def list_sessions(self, user_id: Optional[str] = None) -> List[UploadSession]:
        with self._lock:
            sessions = [
                copy.deepcopy(s) for s in self._sessions.values()
                if user_id is None or s.user_id == user_id
            ]
        return sorted(sessions, key=lambda s: s.started_at)


class JsonFileSessionStore(SessionStore):
    """
    One JSON document per session inside a directory.

    Writes go to a temporary file in the same directory and are moved in
    place with ``os.replace``, so a crash mid-write never leaves a torn
    session file behind. The version check and the replace run under a
    per-session lock file, so writers in other processes sharing the
    directory are serialized as well.
    """

    def __init__(self, directory: str, lock_timeout: float = None):
        """
        Initialize the JSON store.

        Args:
            directory: Folder holding the session files (created if missing)
            lock_timeout: Seconds to wait for another writer's lock
        """
        self.directory = Path(directory)
        self.lock_timeout = SESSION_LOCK_TIMEOUT if lock_timeout is None else lock_timeout
        self._lock = threading.Lock()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Error creating session directory {self.directory}: {str(e)}")
            raise PersistenceError(f"Cannot create session directory {self.directory}: {e}") from e

    def _session_file(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def _lock_file(self, session_id: str) -> FileLock:
        return FileLock(str(self.directory / f"{session_id}.lock"), timeout=self.lock_timeout)

    def _read(self, path: Path) -> Optional[UploadSession]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return UploadSession.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Error reading session file {path}: {str(e)}")
            raise PersistenceError(f"Cannot read session file {path.name}: {e}") from e

    def get(self, session_id: str) -> Optional[UploadSession]:
        with self._lock:
            return self._read(self._session_file(session_id))

    def put(self, session: UploadSession, expected_version: Optional[int] = None) -> UploadSession:
        path = self._session_file(session.session_id)
        with self._lock:
            try:
                with self._lock_file(session.session_id):
                    return self._write(path, session, expected_version)
            except Timeout as e:
                logger.error(f"Timed out waiting for the lock on session {session.session_id}")
                raise PersistenceError(f"Session {session.session_id} is locked by another writer") from e

    def _write(self, path: Path, session: UploadSession, expected_version: Optional[int]) -> UploadSession:
        self._check_version(session.session_id, self._read(path), expected_version)

        stored = copy.deepcopy(session)
        stored.version += 1
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(stored.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error writing session {session.session_id}: {str(e)}")
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError(f"Cannot write session {session.session_id}: {e}") from e

        return stored

    def list_sessions(self, user_id: Optional[str] = None) -> List[UploadSession]:
        sessions = []
        with self._lock:
            for path in self.directory.glob("*.json"):
                try:
                    session = self._read(path)
                except PersistenceError:
                    # Unreadable files are left for get() to report
                    logger.error(f"Skipping unreadable session file {path.name}")
                    continue
                if session is not None and (user_id is None or session.user_id == user_id):
                    sessions.append(session)
        return sorted(sessions, key=lambda s: s.started_at)
