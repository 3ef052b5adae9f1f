"""
Bulk Payslip Ingestion
======================

Estimates, splits and tracks multi-page payslip PDFs through long-lived,
resumable upload sessions.
"""

__version__ = "0.1.0"

from .batch import BatchSplitter
from .estimator import PageCountEstimator
from .models import Batch, FileEntry, FileStatus, PageCountEstimate, SessionStatus, UploadSession
from .resume import FileProcessor, ResumeEngine, ResumeOutcome
from .session_manager import SessionLifecycleManager
from .storage import SessionStore

__all__ = [
    "Batch",
    "BatchSplitter",
    "FileEntry",
    "FileProcessor",
    "FileStatus",
    "PageCountEstimate",
    "PageCountEstimator",
    "ResumeEngine",
    "ResumeOutcome",
    "SessionLifecycleManager",
    "SessionStatus",
    "SessionStore",
    "UploadSession",
]
