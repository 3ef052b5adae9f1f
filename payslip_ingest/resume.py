"""
Resume engine: drives the pending files of a session to a terminal status.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .exceptions import PersistenceError, ResumeAlreadyRunning, ResumeInterrupted, SessionNotResumable, SessionTerminal
from .models import FileEntry, FileStatus, ProcessingResult, SessionStatus
from .session_manager import SessionLifecycleManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
FileCompleteCallback = Callable[[str, ProcessingResult], None]
HintLookup = Callable[[str], Optional[Any]]


class FileProcessor(ABC):
    """Per-file business processor consumed by the resume engine."""

    @abstractmethod
    def process(self, entry: FileEntry, hint: Optional[Any] = None) -> Union[ProcessingResult, Dict[str, Any]]:
        """
        Process one file entry.

        Args:
            entry: File to process; ``entry.source`` points at its content
            hint: Previously learned metadata for this file name, if any

        Returns:
            ProcessingResult, or a mapping with success/skipped/reason keys
        """
        pass


class ResumeStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    NOTHING_TO_DO = "nothing_to_do"


@dataclass
class ResumeOutcome:
    session_id: str
    status: ResumeStatus
    attempted: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    summary: Dict[str, Any] = field(default_factory=dict)


class ResumeEngine:
    """
    Processes the pending files of a session one at a time.

    The engine:
    1. Refuses cancelled sessions and reactivates finished ones that
       still have pending work
    2. Processes pending files strictly in submission order, persisting
       every status transition before moving on
    3. Records processor errors on the failing file and keeps going
    4. Stops between files when the session gets cancelled
    5. Completes the session once nothing is pending

    Failed files are never picked up again on their own; they come back
    only through ``SessionLifecycleManager.retry_failed_files``.
    """

    def __init__(
        self,
        manager: SessionLifecycleManager,
        processor: Union[FileProcessor, Callable[..., Any]],
        hint_lookup: Optional[HintLookup] = None,
    ):
        """
        Initialize the resume engine.

        Args:
            manager: Lifecycle manager owning the session records
            processor: FileProcessor, or a callable taking (entry, hint)
            hint_lookup: Returns the applicable hint for a file name
        """
        self.manager = manager
        self._process = processor.process if isinstance(processor, FileProcessor) else processor
        self.hint_lookup = hint_lookup
        self._running: Set[str] = set()
        self._running_lock = threading.Lock()

    def resume(
        self,
        session_id: str,
        progress_callback: Optional[ProgressCallback] = None,
        file_complete_callback: Optional[FileCompleteCallback] = None,
    ) -> ResumeOutcome:
        """
        Drive every pending file of a session to a terminal status.

        Args:
            session_id: Id of the session to resume
            progress_callback: Called with (position, total) once each file is marked processing
            file_complete_callback: Called with (file_name, result) after each file

        Returns:
            ResumeOutcome describing what this pass did
        """
        with self._claim(session_id):
            return self._resume(session_id, progress_callback, file_complete_callback)

    @contextmanager
    def _claim(self, session_id: str):
        with self._running_lock:
            if session_id in self._running:
                raise ResumeAlreadyRunning(f"Session {session_id} is already being resumed")
            self._running.add(session_id)
        try:
            yield
        finally:
            with self._running_lock:
                self._running.discard(session_id)

    def _resume(
        self,
        session_id: str,
        progress_callback: Optional[ProgressCallback],
        file_complete_callback: Optional[FileCompleteCallback],
    ) -> ResumeOutcome:
        session = self.manager.require_session(session_id)
        if session.status == SessionStatus.CANCELLED:
            raise SessionNotResumable(f"Session {session_id} was cancelled and cannot be resumed")

        outcome = ResumeOutcome(session_id=session_id, status=ResumeStatus.PARTIAL)

        try:
            if any(entry.status == FileStatus.PROCESSING for entry in session.files):
                session = self.manager.recover_interrupted_files(session_id)

            pending = session.pending_indexes()
            if not pending:
                logger.info(f"Session {session_id} has no pending files")
                session = self.manager.complete_session(session_id)
                outcome.status = ResumeStatus.NOTHING_TO_DO
                outcome.summary = session.summary()
                return outcome

            if session.status in (SessionStatus.FAILED, SessionStatus.COMPLETED):
                logger.info(f"Reactivating {session.status.value} session {session_id}")
                session = self.manager.update_session_status(session_id, SessionStatus.ACTIVE)

            logger.info(f"Resuming session {session_id}: {len(pending)} pending files")
            cancelled = self._process_pending(session_id, pending, outcome, progress_callback, file_complete_callback)

            session = self.manager.require_session(session_id)
            if cancelled or session.status == SessionStatus.CANCELLED:
                logger.info(f"Session {session_id} cancelled after {outcome.attempted} files")
                outcome.status = ResumeStatus.CANCELLED
            elif session.pending_files == 0 and session.status == SessionStatus.ACTIVE:
                session = self.manager.complete_session(session_id)
                outcome.status = ResumeStatus.COMPLETED
            else:
                logger.warning(f"Session {session_id} still has {session.pending_files} pending files")

        except PersistenceError as e:
            logger.error(f"Persistence failed while resuming {session_id}: {str(e)}")
            raise ResumeInterrupted(session_id, outcome.attempted, e) from e

        outcome.summary = session.summary()
        return outcome

    def _process_pending(
        self,
        session_id: str,
        pending: List[int],
        outcome: ResumeOutcome,
        progress_callback: Optional[ProgressCallback],
        file_complete_callback: Optional[FileCompleteCallback],
    ) -> bool:
        """Run the sequential loop. Returns True when cancellation was observed."""
        total = len(pending)

        for position, file_index in enumerate(pending, start=1):
            # Cancellation is only observed between files
            session = self.manager.require_session(session_id)
            if session.status == SessionStatus.CANCELLED:
                return True

            entry = session.files[file_index]
            if entry.status != FileStatus.PENDING:
                continue

            try:
                self.manager.update_file_status(session_id, file_index, FileStatus.PROCESSING)
            except SessionTerminal:
                return True

            if progress_callback:
                progress_callback(position, total)

            logger.info(f"Processing file {position}/{total}: {entry.file_name}")
            result = self._run_processor(entry)
            status = result.file_status

            self.manager.update_file_status(
                session_id,
                file_index,
                status,
                reason=result.reason,
                result=result.to_dict(),
            )
            outcome.attempted += 1
            if status == FileStatus.COMPLETED:
                outcome.completed += 1
            elif status == FileStatus.SKIPPED:
                outcome.skipped += 1
            else:
                outcome.failed += 1

            if file_complete_callback:
                file_complete_callback(entry.file_name, result)

        return False

    def _run_processor(self, entry: FileEntry) -> ProcessingResult:
        try:
            hint = self.hint_lookup(entry.file_name) if self.hint_lookup else None
            result = ProcessingResult.from_value(self._process(entry, hint))
        except Exception as e:
            logger.error(f"Error processing {entry.file_name}: {str(e)}")
            return ProcessingResult(success=False, reason=str(e) or type(e).__name__)

        if not result.success and not result.reason:
            result.reason = "Processing failed"
        return result
