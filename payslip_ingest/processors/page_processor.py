"""
Default per-file processor: probes a single-page PDF for text.
"""

import logging
import os
from typing import Any, Optional

from pypdf import PdfReader

from ..models import FileEntry, ProcessingResult
from ..resume import FileProcessor

logger = logging.getLogger(__name__)


class PageTextProcessor(FileProcessor):
    """
    Checks that a page unit is readable and carries text.

    Pages without extractable text (blank separators, scans without a
    text layer) are reported as skipped; unreadable or missing files as
    failed. Business extraction of the payslip itself happens elsewhere.
    """

    def __init__(self, min_characters: int = 1):
        self.min_characters = min_characters

    def process(self, entry: FileEntry, hint: Optional[Any] = None) -> ProcessingResult:
        if not entry.source or not os.path.exists(entry.source):
            return ProcessingResult(success=False, reason=f"Source not found for {entry.file_name}")

        reader = PdfReader(entry.source)
        text = "\n".join((page.extract_text() or "") for page in reader.pages).strip()

        data = {"pages": len(reader.pages), "characters": len(text)}
        if hint is not None:
            data["hint"] = hint

        if len(text) < self.min_characters:
            logger.info(f"No text found in {entry.file_name}, skipping")
            return ProcessingResult(success=True, skipped=True, reason="No extractable text", data=data)

        return ProcessingResult(success=True, data=data)
