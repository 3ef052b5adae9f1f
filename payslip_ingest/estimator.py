"""
Page count estimation for submitted documents.
"""

import logging
import math
import os
from pathlib import Path
from typing import Any, Callable, Optional, Union

from .config import (
    BULK_BYTES_PER_PAGE_KB,
    MAX_ESTIMATED_PAGES,
    RECEIPT_BYTES_PER_PAGE_KB,
    SMALL_FILE_THRESHOLD_KB,
)
from .models import EstimationMethod, PageCountEstimate

logger = logging.getLogger(__name__)

PageReader = Callable[[Any], int]


class PageCountEstimator:
    """
    Produces a best-effort page count for a document.

    An authoritative page reader is tried first when one is configured.
    Whenever it is missing or fails, the count is derived from the file
    size. This class never raises: every call returns a usable estimate.
    """

    def __init__(
        self,
        bytes_per_page_kb: float = None,
        small_file_threshold_kb: float = None,
        max_pages: int = None,
        page_reader: Optional[PageReader] = None,
    ):
        """
        Initialize the estimator.

        Args:
            bytes_per_page_kb: Expected KB per page for this document class
            small_file_threshold_kb: Documents smaller than this are one page
            max_pages: Hard ceiling for heuristic estimates
            page_reader: Callable returning the exact page count of a document
        """
        self.bytes_per_page_kb = bytes_per_page_kb or BULK_BYTES_PER_PAGE_KB
        self.small_file_threshold_kb = (
            SMALL_FILE_THRESHOLD_KB if small_file_threshold_kb is None else small_file_threshold_kb
        )
        self.max_pages = max_pages or MAX_ESTIMATED_PAGES
        self.page_reader = page_reader

    @classmethod
    def for_receipts(cls, page_reader: Optional[PageReader] = None) -> "PageCountEstimator":
        """Estimator tuned for denser individual receipt documents."""
        return cls(bytes_per_page_kb=RECEIPT_BYTES_PER_PAGE_KB, page_reader=page_reader)

    def estimate(self, size_bytes: int, document: Any = None) -> PageCountEstimate:
        """
        Estimate the page count of a document.

        Args:
            size_bytes: Size of the document in bytes
            document: Reference handed to the page reader (path, bytes or stream)

        Returns:
            PageCountEstimate with the method that produced it
        """
        size_kb = max(size_bytes or 0, 0) / 1024

        if self.page_reader is not None and document is not None:
            try:
                page_count = int(self.page_reader(document))
                if page_count >= 1:
                    logger.info(f"Page reader detected {page_count} pages ({size_kb:.0f}KB)")
                    return PageCountEstimate(
                        page_count=page_count,
                        method=EstimationMethod.AUTHORITATIVE,
                        size_kb=size_kb,
                    )
                logger.warning(f"Page reader returned {page_count} pages, using size heuristic")
            except Exception as e:
                logger.warning(f"Page reader failed ({e}), using size heuristic")

        return PageCountEstimate(
            page_count=self._heuristic_count(size_kb),
            method=EstimationMethod.HEURISTIC,
            size_kb=size_kb,
        )

    def estimate_file(self, path: Union[str, Path]) -> PageCountEstimate:
        """Estimate a document on disk, handing its path to the page reader."""
        try:
            size_bytes = os.path.getsize(path)
        except OSError as e:
            logger.warning(f"Cannot stat {path} ({e}), assuming an empty document")
            size_bytes = 0
        return self.estimate(size_bytes, document=path)

    def _heuristic_count(self, size_kb: float) -> int:
        if size_kb < self.small_file_threshold_kb:
            logger.info(f"Small document ({size_kb:.0f}KB), assuming 1 page")
            return 1

        estimated = math.ceil(size_kb / self.bytes_per_page_kb)
        page_count = min(max(estimated, 1), self.max_pages)
        logger.info(
            f"Estimated {page_count} pages from size "
            f"({size_kb:.0f}KB, ~{self.bytes_per_page_kb}KB/page, raw estimate {estimated})"
        )
        return page_count
