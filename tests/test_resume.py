"""
Tests for the resume engine.
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

# Add the project root to the Python path
sys.path.append(str(Path(__file__).parent.parent))

from payslip_ingest.exceptions import (
    ResumeAlreadyRunning,
    ResumeInterrupted,
    SessionNotFound,
    SessionNotResumable,
)
from payslip_ingest.models import FileStatus, ProcessingResult, SessionStatus
from payslip_ingest.resume import FileProcessor, ResumeEngine, ResumeStatus
from payslip_ingest.session_manager import SessionLifecycleManager
from payslip_ingest.storage import InMemorySessionStore
from tests.helpers import FailingStore


class ScriptedProcessor(FileProcessor):
    """Returns a preset result per file name and records what it saw."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def process(self, entry, hint=None):
        self.calls.append((entry.file_name, hint))
        outcome = self.results.get(entry.file_name, ProcessingResult(success=True))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestResumeEngine(unittest.TestCase):
    """Tests for the ResumeEngine class."""

    def setUp(self):
        self.store = InMemorySessionStore()
        self.manager = SessionLifecycleManager(self.store)

    def _finish(self, session_id, index, status=FileStatus.COMPLETED):
        self.manager.update_file_status(session_id, index, FileStatus.PROCESSING)
        self.manager.update_file_status(session_id, index, status)

    def _assert_counters(self, session):
        self.assertEqual(
            session.completed_files + session.failed_files + session.pending_files + session.skipped_files,
            session.total_files,
        )

    def test_resume_processes_only_pending_files(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf", "C.pdf"]).session_id
        self._finish(sid, 0)
        processor = ScriptedProcessor({"C.pdf": ProcessingResult(success=False, reason="unreadable")})
        events = []

        outcome = ResumeEngine(self.manager, processor).resume(
            sid,
            progress_callback=lambda current, total: events.append(("progress", current, total)),
            file_complete_callback=lambda name, result: events.append(("done", name, result.file_status)),
        )

        self.assertEqual([name for name, _ in processor.calls], ["B.pdf", "C.pdf"])
        self.assertEqual(events, [
            ("progress", 1, 2),
            ("done", "B.pdf", FileStatus.COMPLETED),
            ("progress", 2, 2),
            ("done", "C.pdf", FileStatus.FAILED),
        ])
        self.assertEqual(outcome.status, ResumeStatus.COMPLETED)
        self.assertEqual((outcome.attempted, outcome.completed, outcome.failed), (2, 1, 1))

        session = self.manager.get_session_state(sid)
        self.assertEqual(session.status, SessionStatus.COMPLETED)
        self.assertEqual(session.completed_files, 2)
        self.assertEqual(session.failed_files, 1)
        self.assertEqual(session.files[2].reason, "unreadable")
        self.assertEqual(outcome.summary["completedFiles"], 2)

    def test_resume_is_idempotent(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        engine = ResumeEngine(self.manager, ScriptedProcessor())
        engine.resume(sid)
        version = self.manager.get_session_state(sid).version

        outcome = engine.resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.NOTHING_TO_DO)
        self.assertEqual(outcome.attempted, 0)
        self.assertEqual(self.manager.get_session_state(sid).version, version)

    def test_nothing_pending_completes_active_session(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        self._finish(sid, 0, FileStatus.SKIPPED)

        outcome = ResumeEngine(self.manager, ScriptedProcessor()).resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.NOTHING_TO_DO)
        self.assertEqual(self.manager.get_session_state(sid).status, SessionStatus.COMPLETED)

    def test_failed_files_need_explicit_retry(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf"]).session_id
        self._finish(sid, 0, FileStatus.FAILED)
        processor = ScriptedProcessor()
        engine = ResumeEngine(self.manager, processor)

        engine.resume(sid)
        self.assertEqual([name for name, _ in processor.calls], ["B.pdf"])
        self.assertEqual(self.manager.get_session_state(sid).files[0].status, FileStatus.FAILED)

        self.manager.retry_failed_files(sid)
        outcome = engine.resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.COMPLETED)
        self.assertEqual([name for name, _ in processor.calls], ["B.pdf", "A.pdf"])
        session = self.manager.get_session_state(sid)
        self.assertEqual(session.completed_files, 2)
        self.assertEqual(session.failed_files, 0)

    def test_processor_results(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf", "C.pdf", "D.pdf"]).session_id
        processor = ScriptedProcessor({
            "A.pdf": {"success": True, "skipped": True, "reason": "duplicate payslip"},
            "B.pdf": ValueError("bad CUIL"),
            "C.pdf": {"success": False},
            "D.pdf": {"success": True, "data": {"employees": 3}},
        })

        outcome = ResumeEngine(self.manager, processor).resume(sid)

        session = self.manager.get_session_state(sid)
        self.assertEqual([f.status for f in session.files], [
            FileStatus.SKIPPED, FileStatus.FAILED, FileStatus.FAILED, FileStatus.COMPLETED,
        ])
        self.assertEqual(session.files[0].reason, "duplicate payslip")
        self.assertEqual(session.files[1].reason, "bad CUIL")
        self.assertEqual(session.files[2].reason, "Processing failed")
        self.assertEqual(session.files[3].result["data"], {"employees": 3})
        self.assertEqual((outcome.completed, outcome.failed, outcome.skipped), (1, 2, 1))
        self.assertEqual(session.status, SessionStatus.COMPLETED)

    def test_plain_callable_processor(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        processor = MagicMock(return_value={"success": True})

        ResumeEngine(self.manager, processor).resume(sid)

        processor.assert_called_once()
        entry, hint = processor.call_args[0]
        self.assertEqual(entry.file_name, "A.pdf")
        self.assertIsNone(hint)

    def test_hint_lookup(self):
        sid = self.manager.create_session("user-1", ["J092025.pdf", "other.pdf"]).session_id
        hints = {"J092025.pdf": {"period": "09/2025"}}
        processor = ScriptedProcessor()

        ResumeEngine(self.manager, processor, hint_lookup=hints.get).resume(sid)

        self.assertEqual(processor.calls, [
            ("J092025.pdf", {"period": "09/2025"}),
            ("other.pdf", None),
        ])

    def test_failing_hint_lookup_fails_the_file(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        lookup = MagicMock(side_effect=KeyError("hints"))

        ResumeEngine(self.manager, ScriptedProcessor(), hint_lookup=lookup).resume(sid)

        self.assertEqual(self.manager.get_session_state(sid).files[0].status, FileStatus.FAILED)

    def test_duplicate_file_names(self):
        sid = self.manager.create_session("user-1", ["recibo.pdf", "recibo.pdf"]).session_id
        self._finish(sid, 0)
        processor = ScriptedProcessor()

        ResumeEngine(self.manager, processor).resume(sid)

        self.assertEqual(len(processor.calls), 1)
        session = self.manager.get_session_state(sid)
        self.assertEqual(session.completed_files, 2)

    def test_cancel_from_progress_callback(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf"]).session_id
        processor = ScriptedProcessor()
        positions = []

        def on_progress(current, total):
            positions.append(current)
            self.manager.cancel_session(sid)

        outcome = ResumeEngine(self.manager, processor).resume(sid, progress_callback=on_progress)

        self.assertEqual(outcome.status, ResumeStatus.CANCELLED)
        self.assertEqual(positions, [1])
        self.assertEqual([name for name, _ in processor.calls], ["A.pdf"])
        session = self.manager.get_session_state(sid)
        self.assertEqual(session.files[0].status, FileStatus.COMPLETED)
        self.assertEqual(session.files[1].status, FileStatus.PENDING)

    def test_cancel_before_file_starts(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf"]).session_id

        class CancelOnNextRead(SessionLifecycleManager):
            armed = False

            def require_session(self, session_id):
                session = super().require_session(session_id)
                if self.armed:
                    self.armed = False
                    self.cancel_session(session_id)
                return session

        manager = CancelOnNextRead(self.store)
        positions = []

        def on_file_complete(name, result):
            manager.armed = True

        outcome = ResumeEngine(manager, ScriptedProcessor()).resume(
            sid,
            progress_callback=lambda current, total: positions.append(current),
            file_complete_callback=on_file_complete,
        )

        self.assertEqual(outcome.status, ResumeStatus.CANCELLED)
        self.assertEqual(outcome.attempted, 1)
        self.assertEqual(positions, [1])
        session = manager.get_session_state(sid)
        self.assertEqual(session.status, SessionStatus.CANCELLED)
        self.assertEqual(session.files[1].status, FileStatus.PENDING)

    def test_counters_hold_during_resume(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf", "C.pdf"]).session_id
        processor = ScriptedProcessor({"B.pdf": {"success": False, "reason": "x"}})
        seen = []

        def check(current, total):
            session = self.manager.get_session_state(sid)
            self._assert_counters(session)
            seen.append(session.pending_files)

        ResumeEngine(self.manager, processor).resume(
            sid,
            progress_callback=check,
            file_complete_callback=lambda name, result: check(0, 0),
        )

        self.assertEqual(seen, [3, 2, 2, 1, 1, 0])

    def test_cancel_during_resume(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf", "C.pdf"]).session_id
        manager = self.manager

        class CancellingProcessor(ScriptedProcessor):
            def process(self, entry, hint=None):
                manager.cancel_session(sid)
                return super().process(entry, hint)

        processor = CancellingProcessor()
        engine = ResumeEngine(self.manager, processor)

        outcome = engine.resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.CANCELLED)
        self.assertEqual(outcome.attempted, 1)
        session = self.manager.get_session_state(sid)
        self.assertEqual(session.status, SessionStatus.CANCELLED)
        self.assertEqual(session.files[0].status, FileStatus.COMPLETED)
        self.assertEqual(session.pending_files, 2)
        self._assert_counters(session)

        with self.assertRaises(SessionNotResumable):
            engine.resume(sid)
        self.assertEqual(len(processor.calls), 1)

    def test_unknown_session(self):
        with self.assertRaises(SessionNotFound):
            ResumeEngine(self.manager, ScriptedProcessor()).resume("upload_missing")

    def test_failed_session_is_reactivated(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        self.manager.fail_session(sid, "worker crashed")

        outcome = ResumeEngine(self.manager, ScriptedProcessor()).resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.COMPLETED)
        session = self.manager.get_session_state(sid)
        self.assertEqual(session.status, SessionStatus.COMPLETED)
        self.assertIsNone(session.error_message)

    def test_completed_session_with_retried_files_is_reactivated(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        self._finish(sid, 0, FileStatus.FAILED)
        self.manager.complete_session(sid)
        self.manager.retry_failed_files(sid)

        outcome = ResumeEngine(self.manager, ScriptedProcessor()).resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.COMPLETED)
        self.assertEqual(self.manager.get_session_state(sid).completed_files, 1)

    def test_interrupted_file_is_recovered(self):
        sid = self.manager.create_session("user-1", ["A.pdf", "B.pdf"]).session_id
        self.manager.update_file_status(sid, 0, FileStatus.PROCESSING)
        processor = ScriptedProcessor()

        outcome = ResumeEngine(self.manager, processor).resume(sid)

        self.assertEqual([name for name, _ in processor.calls], ["A.pdf", "B.pdf"])
        self.assertEqual(outcome.status, ResumeStatus.COMPLETED)

    def test_store_failure_interrupts_resume(self):
        store = FailingStore()
        manager = SessionLifecycleManager(store)
        sid = manager.create_session("user-1", ["A.pdf", "B.pdf", "C.pdf"]).session_id
        engine = ResumeEngine(manager, ScriptedProcessor())

        # A is fully written, B reaches processing, B's result cannot be saved
        store.fail_after = 3
        with self.assertRaises(ResumeInterrupted) as ctx:
            engine.resume(sid)

        self.assertEqual(ctx.exception.files_saved, 1)
        self.assertIn("try again", str(ctx.exception))

        store.fail_after = None
        session = manager.get_session_state(sid)
        self.assertEqual(session.files[0].status, FileStatus.COMPLETED)
        self.assertEqual(session.files[1].status, FileStatus.PROCESSING)

        outcome = engine.resume(sid)

        self.assertEqual(outcome.status, ResumeStatus.COMPLETED)
        self.assertEqual(manager.get_session_state(sid).completed_files, 3)

    def test_concurrent_resume_is_rejected(self):
        sid = self.manager.create_session("user-1", ["A.pdf"]).session_id
        errors = []

        def processor(entry, hint):
            try:
                engine.resume(sid)
            except ResumeAlreadyRunning as e:
                errors.append(e)
            return {"success": True}

        engine = ResumeEngine(self.manager, processor)
        engine.resume(sid)

        self.assertEqual(len(errors), 1)
        self.assertEqual(self.manager.get_session_state(sid).status, SessionStatus.COMPLETED)


if __name__ == "__main__":
    unittest.main()
