"""
Shared data models for the ingestion pipeline.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import IllegalTransition


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class BatchState(str, Enum):
    PENDIENTE = "pendiente"
    PROCESANDO = "procesando"
    COMPLETADO = "completado"
    ERROR = "error"


class EstimationMethod(str, Enum):
    AUTHORITATIVE = "authoritative"
    HEURISTIC = "heuristic"


TERMINAL_FILE_STATUSES = (FileStatus.COMPLETED, FileStatus.FAILED, FileStatus.SKIPPED)


@dataclass
class FileEntry:
    """One logical unit of work inside a session (one page or one small document)."""

    file_name: str
    index: int
    status: FileStatus = FileStatus.PENDING
    reason: Optional[str] = None
    result: Optional[Any] = None
    source: Optional[str] = None  # path of the page unit on disk
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "index": self.index,
            "status": self.status.value,
            "reason": self.reason,
            "result": self.result,
            "source": self.source,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileEntry":
        return cls(
            file_name=data["file_name"],
            index=data["index"],
            status=FileStatus(data.get("status", FileStatus.PENDING.value)),
            reason=data.get("reason"),
            result=data.get("result"),
            source=data.get("source"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class UploadSession:
    """
    A multi-file upload tracked end to end, including across interruptions.

    The counters are a cache over ``files``. They are always rebuilt by
    ``recount()`` inside the same write that changes a file status, so
    ``completed + failed + pending + skipped == total`` holds for every
    persisted state. A file in ``processing`` is counted as pending.
    """

    session_id: str
    user_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    files: List[FileEntry] = field(default_factory=list)
    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    pending_files: int = 0
    skipped_files: int = 0
    current_file_index: int = 0
    started_at: int = field(default_factory=now_ms)
    last_updated_at: int = field(default_factory=now_ms)
    completed_at: Optional[int] = None
    error_message: Optional[str] = None
    version: int = 0

    def recount(self) -> None:
        """Rebuild the cached counters from the file entries."""
        counts = {status: 0 for status in FileStatus}
        for entry in self.files:
            counts[entry.status] += 1

        self.total_files = len(self.files)
        self.completed_files = counts[FileStatus.COMPLETED]
        self.failed_files = counts[FileStatus.FAILED]
        self.skipped_files = counts[FileStatus.SKIPPED]
        self.pending_files = counts[FileStatus.PENDING] + counts[FileStatus.PROCESSING]

    def pending_indexes(self) -> List[int]:
        """Indexes of files still waiting to be processed, in submission order."""
        return [entry.index for entry in self.files if entry.status == FileStatus.PENDING]

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.ACTIVE

    def summary(self) -> Dict[str, Any]:
        """Read model handed to the UI layer."""
        return {
            "sessionId": self.session_id,
            "status": self.status.value,
            "totalFiles": self.total_files,
            "completedFiles": self.completed_files,
            "failedFiles": self.failed_files,
            "pendingFiles": self.pending_files,
            "skippedFiles": self.skipped_files,
            "fileNames": [entry.file_name for entry in self.files],
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "files": [entry.to_dict() for entry in self.files],
            "total_files": self.total_files,
            "completed_files": self.completed_files,
            "failed_files": self.failed_files,
            "pending_files": self.pending_files,
            "skipped_files": self.skipped_files,
            "current_file_index": self.current_file_index,
            "started_at": self.started_at,
            "last_updated_at": self.last_updated_at,
            "completed_at": self.completed_at,
            "error_message": self.error_message,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UploadSession":
        session = cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            status=SessionStatus(data.get("status", SessionStatus.ACTIVE.value)),
            files=[FileEntry.from_dict(f) for f in data.get("files", [])],
            current_file_index=data.get("current_file_index", 0),
            started_at=data.get("started_at") or now_ms(),
            last_updated_at=data.get("last_updated_at") or now_ms(),
            completed_at=data.get("completed_at"),
            error_message=data.get("error_message"),
            version=data.get("version", 0),
        )
        # Stored counters are a cache; never trust them over the entries
        session.recount()
        return session


@dataclass
class Batch:
    """A contiguous page range ("lote") of one source document."""

    id: int
    total_batches: int
    page_range_start: int
    page_range_end: int
    estado: BatchState = BatchState.PENDIENTE
    pages_processed: int = 0

    @property
    def pages_in_batch(self) -> int:
        return self.page_range_end - self.page_range_start + 1

    @property
    def page_numbers(self) -> List[int]:
        return list(range(self.page_range_start, self.page_range_end + 1))

    def start(self) -> None:
        self._move(BatchState.PENDIENTE, BatchState.PROCESANDO)

    def complete(self, pages_processed: Optional[int] = None) -> None:
        self._move(BatchState.PROCESANDO, BatchState.COMPLETADO)
        self.pages_processed = self.pages_in_batch if pages_processed is None else pages_processed

    def fail(self) -> None:
        self._move(BatchState.PROCESANDO, BatchState.ERROR)

    def _move(self, expected: BatchState, target: BatchState) -> None:
        if self.estado != expected:
            raise IllegalTransition("batch", self.estado.value, target.value)
        self.estado = target

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "total_batches": self.total_batches,
            "page_range_start": self.page_range_start,
            "page_range_end": self.page_range_end,
            "estado": self.estado.value,
            "pages_processed": self.pages_processed,
        }


@dataclass
class PageCountEstimate:
    """Best-effort page count of a document."""

    page_count: int
    method: EstimationMethod
    size_kb: float = 0.0


@dataclass
class PageUnit:
    """A single page written out of a batch as its own document."""

    file_name: str
    page_number: int
    path: str


@dataclass
class ProcessingResult:
    """Outcome reported by the per-file processor."""

    success: bool
    skipped: bool = False
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def file_status(self) -> FileStatus:
        if not self.success:
            return FileStatus.FAILED
        return FileStatus.SKIPPED if self.skipped else FileStatus.COMPLETED

    @classmethod
    def from_value(cls, value: Any) -> "ProcessingResult":
        """Accept either a ProcessingResult or a mapping with the same keys."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(
                success=bool(value.get("success", False)),
                skipped=bool(value.get("skipped", False)),
                reason=value.get("reason"),
                data=dict(value.get("data") or {}),
            )
        raise TypeError(f"Unsupported processor result: {type(value).__name__}")

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "reason": self.reason,
            "data": self.data,
        }
