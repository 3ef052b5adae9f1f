"""
Session lifecycle management: creation, status transitions and counters.
"""

import logging
import uuid
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import STORE_WRITE_ATTEMPTS
from .exceptions import (
    ConcurrentModification,
    FilesStillPending,
    IllegalTransition,
    InvalidInput,
    SessionNotFound,
    SessionTerminal,
)
from .models import (
    TERMINAL_FILE_STATUSES,
    FileEntry,
    FileStatus,
    SessionStatus,
    UploadSession,
    now_ms,
)
from .storage import SessionStore

logger = logging.getLogger(__name__)

# Transitions reachable through update_file_status. failed -> pending and
# processing -> pending exist only through retry_failed_files and
# recover_interrupted_files.
FILE_TRANSITIONS: Dict[FileStatus, FrozenSet[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.PROCESSING}),
    FileStatus.PROCESSING: frozenset(TERMINAL_FILE_STATUSES),
    FileStatus.COMPLETED: frozenset(),
    FileStatus.FAILED: frozenset(),
    FileStatus.SKIPPED: frozenset(),
}

SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}),
    SessionStatus.FAILED: frozenset({SessionStatus.ACTIVE}),
    SessionStatus.COMPLETED: frozenset({SessionStatus.ACTIVE}),
    SessionStatus.CANCELLED: frozenset(),
}

# Returns True when the session was changed and must be written
Mutator = Callable[[UploadSession], bool]


class SessionLifecycleManager:
    """
    Owns every mutation of an upload session.

    Each operation is one atomic read-modify-write against the store:
    the session is loaded, changed, its counters rebuilt, and written back
    with the version it was read at. A write that loses a race is retried
    on fresh state; domain errors are never retried.
    """

    def __init__(self, store: SessionStore):
        self.store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session_state(self, session_id: str) -> Optional[UploadSession]:
        return self.store.get(session_id)

    def require_session(self, session_id: str) -> UploadSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def list_active_sessions(self, user_id: str) -> List[UploadSession]:
        return self.store.list_active_sessions(user_id)

    # ------------------------------------------------------------------
    # Session creation
    # ------------------------------------------------------------------

    def create_session(
        self,
        user_id: str,
        file_names: Sequence[str],
        sources: Optional[Sequence[Optional[str]]] = None,
    ) -> UploadSession:
        """
        Create a new active session with every file pending.

        Args:
            user_id: Opaque id of the owning user
            file_names: Display names in submission order
            sources: Optional page unit paths, aligned with file_names

        Returns:
            The stored session
        """
        entries = self._build_entries(file_names, sources, first_index=0)

        session = UploadSession(
            session_id=f"upload_{uuid.uuid4().hex}",
            user_id=user_id,
            status=SessionStatus.ACTIVE,
            files=entries,
        )
        session.recount()

        stored = self.store.put(session, expected_version=0)
        logger.info(f"Created session {stored.session_id} for user {user_id} with {stored.total_files} files")
        return stored

    def append_files(
        self,
        session_id: str,
        file_names: Sequence[str],
        sources: Optional[Sequence[Optional[str]]] = None,
    ) -> UploadSession:
        """Add pending files to the end of a non-terminal session."""

        def mutate(session: UploadSession) -> bool:
            if session.is_terminal:
                raise SessionTerminal(session_id, session.status.value)
            session.files.extend(self._build_entries(file_names, sources, first_index=len(session.files)))
            return True

        stored = self._mutate(session_id, mutate)
        logger.info(f"Appended {len(file_names)} files to session {session_id} ({stored.total_files} total)")
        return stored

    # ------------------------------------------------------------------
    # File transitions
    # ------------------------------------------------------------------

    def update_file_status(
        self,
        session_id: str,
        file_index: int,
        new_status: FileStatus,
        reason: Optional[str] = None,
        result: Optional[Any] = None,
    ) -> UploadSession:
        """
        Move one file along the file state machine.

        Files are addressed by position; display names may repeat inside a
        session. Starting a file requires an active session, which is how a
        concurrent cancellation is observed atomically.
        """
        new_status = FileStatus(new_status)

        def mutate(session: UploadSession) -> bool:
            entry = self._entry(session, file_index)
            if new_status not in FILE_TRANSITIONS[entry.status]:
                raise IllegalTransition("file", entry.status.value, new_status.value)
            if new_status == FileStatus.PROCESSING and session.status != SessionStatus.ACTIVE:
                raise SessionTerminal(session_id, session.status.value)

            timestamp = now_ms()
            entry.status = new_status
            if new_status == FileStatus.PROCESSING:
                entry.started_at = timestamp
            else:
                entry.reason = reason
                entry.result = result
                entry.completed_at = timestamp
            session.current_file_index = file_index + 1
            return True

        stored = self._mutate(session_id, mutate)
        logger.debug(f"Session {session_id} file {file_index} -> {new_status.value}")
        return stored

    def retry_failed_files(self, session_id: str, file_indexes: Optional[Iterable[int]] = None) -> UploadSession:
        """
        Explicitly put failed files back to pending.

        Args:
            session_id: Id of the session
            file_indexes: Files to retry; every failed file when omitted

        Returns:
            The stored session
        """
        indexes = None if file_indexes is None else list(file_indexes)

        def mutate(session: UploadSession) -> bool:
            if session.status == SessionStatus.CANCELLED:
                raise SessionTerminal(session_id, session.status.value)

            if indexes is None:
                targets = [e for e in session.files if e.status == FileStatus.FAILED]
            else:
                targets = [self._entry(session, i) for i in indexes]
                for entry in targets:
                    if entry.status != FileStatus.FAILED:
                        raise IllegalTransition("file", entry.status.value, FileStatus.PENDING.value)

            for entry in targets:
                entry.status = FileStatus.PENDING
                entry.reason = None
                entry.result = None
                entry.started_at = None
                entry.completed_at = None
            return bool(targets)

        stored = self._mutate(session_id, mutate)
        logger.info(f"Session {session_id}: {stored.pending_files} files pending after retry")
        return stored

    def recover_interrupted_files(self, session_id: str) -> UploadSession:
        """Return files stuck in processing by a hard interruption to pending."""
        recovered = []

        def mutate(session: UploadSession) -> bool:
            recovered.clear()
            for entry in session.files:
                if entry.status == FileStatus.PROCESSING:
                    entry.status = FileStatus.PENDING
                    entry.started_at = None
                    recovered.append(entry.index)
            return bool(recovered)

        stored = self._mutate(session_id, mutate)
        if recovered:
            logger.warning(f"Session {session_id}: recovered interrupted files {recovered}")
        return stored

    # ------------------------------------------------------------------
    # Session transitions
    # ------------------------------------------------------------------

    def update_session_status(
        self,
        session_id: str,
        new_status: SessionStatus,
        error_message: Optional[str] = None,
    ) -> UploadSession:
        """Move the session along the session state machine."""
        new_status = SessionStatus(new_status)

        def mutate(session: UploadSession) -> bool:
            if session.status == new_status:
                return False
            self._apply_session_status(session, new_status, error_message)
            return True

        stored = self._mutate(session_id, mutate)
        logger.info(f"Session {session_id} status: {stored.status.value}")
        return stored

    def complete_session(self, session_id: str) -> UploadSession:
        """
        Mark a session completed once no file is pending.

        Completing an already completed session is a no-op. A failed
        session with nothing pending is reactivated and completed in the
        same write.
        """

        def mutate(session: UploadSession) -> bool:
            if session.status == SessionStatus.COMPLETED:
                return False
            if session.status == SessionStatus.CANCELLED:
                raise SessionTerminal(session_id, session.status.value)
            if session.status == SessionStatus.FAILED:
                self._apply_session_status(session, SessionStatus.ACTIVE)
            self._apply_session_status(session, SessionStatus.COMPLETED)
            return True

        stored = self._mutate(session_id, mutate)
        logger.info(
            f"Session {session_id} completed: {stored.completed_files} completed, "
            f"{stored.failed_files} failed, {stored.skipped_files} skipped"
        )
        return stored

    def fail_session(self, session_id: str, error_message: str) -> UploadSession:
        return self.update_session_status(session_id, SessionStatus.FAILED, error_message)

    def cancel_session(self, session_id: str) -> UploadSession:
        """Cancel a non-terminal session. Cancelled sessions never come back."""

        def mutate(session: UploadSession) -> bool:
            if session.status == SessionStatus.CANCELLED:
                return False
            if session.is_terminal:
                raise SessionTerminal(session_id, session.status.value)
            self._apply_session_status(session, SessionStatus.CANCELLED)
            return True

        stored = self._mutate(session_id, mutate)
        logger.info(f"Session {session_id} cancelled with {stored.pending_files} files pending")
        return stored

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(ConcurrentModification),
        stop=stop_after_attempt(STORE_WRITE_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=1),
        reraise=True,
    )
    def _mutate(self, session_id: str, mutator: Mutator) -> UploadSession:
        session = self.require_session(session_id)
        read_version = session.version

        if not mutator(session):
            return session

        session.recount()
        session.last_updated_at = now_ms()
        try:
            return self.store.put(session, expected_version=read_version)
        except ConcurrentModification as e:
            logger.warning(f"Write conflict on session {session_id}, retrying: {e}")
            raise

    @staticmethod
    def _apply_session_status(
        session: UploadSession,
        new_status: SessionStatus,
        error_message: Optional[str] = None,
    ) -> None:
        if new_status not in SESSION_TRANSITIONS[session.status]:
            raise IllegalTransition("session", session.status.value, new_status.value)

        if new_status == SessionStatus.COMPLETED:
            session.recount()
            if session.pending_files > 0:
                raise FilesStillPending(session.session_id, session.pending_files)
            session.completed_at = now_ms()
        elif new_status == SessionStatus.ACTIVE:
            session.completed_at = None
            session.error_message = None
        elif new_status == SessionStatus.FAILED:
            session.error_message = error_message

        session.status = new_status

    @staticmethod
    def _entry(session: UploadSession, file_index: int) -> FileEntry:
        if not 0 <= file_index < len(session.files):
            raise InvalidInput(
                f"File index {file_index} out of range for session {session.session_id} "
                f"({len(session.files)} files)"
            )
        return session.files[file_index]

    @staticmethod
    def _build_entries(
        file_names: Sequence[str],
        sources: Optional[Sequence[Optional[str]]],
        first_index: int,
    ) -> List[FileEntry]:
        if not file_names:
            raise InvalidInput("At least one file name is required")
        if sources is not None and len(sources) != len(file_names):
            raise InvalidInput(
                f"Got {len(sources)} sources for {len(file_names)} file names"
            )

        return [
            FileEntry(
                file_name=name,
                index=first_index + offset,
                status=FileStatus.PENDING,
                source=sources[offset] if sources is not None else None,
            )
            for offset, name in enumerate(file_names)
        ]
