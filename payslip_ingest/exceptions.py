"""
Error taxonomy for the ingestion pipeline.
"""


class IngestError(Exception):
    """Base class for every error raised by the ingestion core."""


class InvalidInput(IngestError, ValueError):
    """The caller passed arguments that can never succeed."""


class SessionNotFound(IngestError):
    """No session is stored under the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionTerminal(IngestError):
    """The session is in a terminal status and cannot take this operation."""

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is {status}")
        self.session_id = session_id
        self.status = status


class SessionNotResumable(IngestError):
    """The session exists but resume is not allowed for it."""


class ResumeAlreadyRunning(SessionNotResumable):
    """Another resume pass is already driving this session."""


class IllegalTransition(IngestError):
    """A file or session status change outside the state machine."""

    def __init__(self, kind: str, current: str, requested: str):
        super().__init__(f"Illegal {kind} transition: {current} -> {requested}")
        self.kind = kind
        self.current = current
        self.requested = requested


class FilesStillPending(IngestError):
    """A session cannot be completed while files are still pending."""

    def __init__(self, session_id: str, pending_files: int):
        super().__init__(f"Session {session_id} still has {pending_files} pending file(s)")
        self.session_id = session_id
        self.pending_files = pending_files


class PageExtractionError(IngestError):
    """A batch of pages could not be extracted from its source document."""


class PersistenceError(IngestError):
    """The session store could not read or write durable state."""


class ConcurrentModification(PersistenceError):
    """The stored session changed between read and write."""

    def __init__(self, session_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Session {session_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ResumeInterrupted(PersistenceError):
    """Resume stopped because progress could no longer be persisted."""

    def __init__(self, session_id: str, files_saved: int, cause: Exception):
        super().__init__(
            f"resume did not complete; progress up to file {files_saved} is saved, try again "
            f"({cause})"
        )
        self.session_id = session_id
        self.files_saved = files_saved
        self.cause = cause
