#!/usr/bin/env python3
import argparse
import json
import logging
import os
import sys

from tqdm import tqdm

from payslip_ingest.config import SESSION_STORE_DIR, SESSION_STORE_TYPE
from payslip_ingest.exceptions import IngestError, ResumeInterrupted
from payslip_ingest.orchestrator import IngestPipeline
from payslip_ingest.processors import PageTextProcessor
from payslip_ingest.resume import ResumeEngine
from payslip_ingest.session_manager import SessionLifecycleManager
from payslip_ingest.storage import SessionStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("payslip_ingest.log")
    ]
)
logger = logging.getLogger(__name__)


def build_manager(args) -> SessionLifecycleManager:
    store = SessionStore.create(args.store, {"directory": args.store_dir})
    return SessionLifecycleManager(store)


def cmd_ingest(args, manager: SessionLifecycleManager) -> int:
    for path in args.files:
        if not os.path.exists(path):
            logger.error(f"Input file not found: {path}")
            return 1
        if not path.lower().endswith('.pdf'):
            logger.error(f"Input file must be a PDF: {path}")
            return 1

    pipeline = IngestPipeline(manager, output_dir=args.pages_dir)
    result = pipeline.ingest(args.user, args.files, session_id=args.session)

    for document in result.documents:
        progress = document.progress
        logger.info(
            f"{document.document_name}: {document.estimate.page_count} pages "
            f"({document.estimate.method.value}), {progress.total_batches} lotes, "
            f"{progress.errored} failed"
        )
    print(json.dumps(result.session.summary(), indent=2, ensure_ascii=False))
    return 0


def cmd_resume(args, manager: SessionLifecycleManager) -> int:
    engine = ResumeEngine(manager, PageTextProcessor())
    bar = None

    def on_progress(current: int, total: int):
        nonlocal bar
        if bar is None:
            bar = tqdm(total=total, desc="Resuming upload")
        bar.n = current - 1
        bar.refresh()

    def on_file_complete(file_name: str, result):
        status = result.file_status.value
        reason = f" ({result.reason})" if result.reason else ""
        logger.info(f"{file_name}: {status}{reason}")
        if bar is not None:
            bar.update(1)

    try:
        outcome = engine.resume(args.session_id, on_progress, on_file_complete)
    except ResumeInterrupted as e:
        logger.error(str(e))
        return 1
    finally:
        if bar is not None:
            bar.close()

    logger.info(
        f"Resume {outcome.status.value}: {outcome.completed} completed, "
        f"{outcome.failed} failed, {outcome.skipped} skipped"
    )
    print(json.dumps(outcome.summary, indent=2, ensure_ascii=False))
    return 0


def cmd_status(args, manager: SessionLifecycleManager) -> int:
    session = manager.require_session(args.session_id)
    summary = session.summary()
    if args.files:
        summary["files"] = [
            {"index": f.index, "fileName": f.file_name, "status": f.status.value, "reason": f.reason}
            for f in session.files
        ]
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


def cmd_retry(args, manager: SessionLifecycleManager) -> int:
    session = manager.retry_failed_files(args.session_id, args.index)
    print(json.dumps(session.summary(), indent=2, ensure_ascii=False))
    return 0


def cmd_cancel(args, manager: SessionLifecycleManager) -> int:
    session = manager.cancel_session(args.session_id)
    print(json.dumps(session.summary(), indent=2, ensure_ascii=False))
    return 0


def cmd_list(args, manager: SessionLifecycleManager) -> int:
    sessions = manager.list_active_sessions(args.user)
    print(json.dumps([s.summary() for s in sessions], indent=2, ensure_ascii=False))
    return 0


def main():
    """
    Main entry point for bulk payslip ingestion.
    """
    parser = argparse.ArgumentParser(
        description="Bulk payslip ingestion: split PDFs and track resumable upload sessions"
    )
    parser.add_argument("--store", default=SESSION_STORE_TYPE, help="Session store type (json or memory)")
    parser.add_argument("--store-dir", default=SESSION_STORE_DIR, help="Directory of the JSON session store")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Split PDFs and register their pages in a session")
    ingest.add_argument("-u", "--user", required=True, help="Owning user id")
    ingest.add_argument("-s", "--session", help="Append to an existing session instead of creating one")
    ingest.add_argument("--pages-dir", help="Directory for extracted single-page PDFs")
    ingest.add_argument("files", nargs="+", help="Input PDF files")
    ingest.set_defaults(handler=cmd_ingest)

    resume = subparsers.add_parser("resume", help="Process the pending files of a session")
    resume.add_argument("session_id")
    resume.set_defaults(handler=cmd_resume)

    status = subparsers.add_parser("status", help="Show a session summary")
    status.add_argument("session_id")
    status.add_argument("--files", action="store_true", help="Include per-file status")
    status.set_defaults(handler=cmd_status)

    retry = subparsers.add_parser("retry", help="Put failed files back to pending")
    retry.add_argument("session_id")
    retry.add_argument("-i", "--index", type=int, action="append", help="File index to retry (repeatable)")
    retry.set_defaults(handler=cmd_retry)

    cancel = subparsers.add_parser("cancel", help="Cancel a session")
    cancel.add_argument("session_id")
    cancel.set_defaults(handler=cmd_cancel)

    list_sessions = subparsers.add_parser("list", help="List sessions that still need work")
    list_sessions.add_argument("-u", "--user", required=True, help="Owning user id")
    list_sessions.set_defaults(handler=cmd_list)

    args = parser.parse_args()

    try:
        manager = build_manager(args)
        sys.exit(args.handler(args, manager))
    except IngestError as e:
        logger.error(f"Error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
