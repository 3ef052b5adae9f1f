"""
Batch splitting module for bounding how many pages one step handles.
"""

import logging
import math
from dataclasses import dataclass
from typing import List

from .config import MAX_PAGES_PER_BATCH
from .exceptions import InvalidInput
from .models import Batch, BatchState, PageCountEstimate

logger = logging.getLogger(__name__)


@dataclass
class BatchProgress:
    """Aggregate progress over the batches of one source document."""

    total_batches: int
    pending: int
    processing: int
    completed: int
    errored: int
    pages_total: int
    pages_processed: int

    @property
    def page_percentage(self) -> float:
        return (self.pages_processed / self.pages_total) * 100 if self.pages_total else 0.0

    @property
    def batch_percentage(self) -> float:
        return (self.completed / self.total_batches) * 100 if self.total_batches else 0.0


class BatchSplitter:
    """
    Splits a document's page count into ordered batches ("lotes").

    Each batch is a contiguous page range of at most ``max_pages_per_batch``
    pages, so one batch bounds the memory and time of a single extraction
    step and gives callers a checkpoint for progress and failure isolation.
    """

    def __init__(self, max_pages_per_batch: int = None):
        """
        Initialize the batch splitter.

        Args:
            max_pages_per_batch: Upper bound of pages per batch (default: 100)
        """
        self.max_pages_per_batch = (
            MAX_PAGES_PER_BATCH if max_pages_per_batch is None else max_pages_per_batch
        )

    def split(self, page_count: int, max_pages_per_batch: int = None) -> List[Batch]:
        """
        Split pages into batches covering ``[1, page_count]`` without gaps.

        Args:
            page_count: Number of pages in the document
            max_pages_per_batch: Override of the configured batch size

        Returns:
            List of batches in page order
        """
        batch_size = self.max_pages_per_batch if max_pages_per_batch is None else max_pages_per_batch
        if batch_size < 1:
            raise InvalidInput(f"max_pages_per_batch must be >= 1, got {batch_size}")
        if page_count < 1:
            raise InvalidInput(f"page_count must be >= 1, got {page_count}")

        if page_count == 1:
            return [Batch(id=1, total_batches=1, page_range_start=1, page_range_end=1)]

        num_batches = math.ceil(page_count / batch_size)
        batches = []

        for i in range(1, num_batches + 1):
            batches.append(
                Batch(
                    id=i,
                    total_batches=num_batches,
                    page_range_start=(i - 1) * batch_size + 1,
                    page_range_end=min(i * batch_size, page_count),
                )
            )

        logger.info(f"Split {page_count} pages into {num_batches} batches of up to {batch_size} pages")
        return batches

    def split_estimate(self, estimate: PageCountEstimate) -> List[Batch]:
        return self.split(estimate.page_count)


def summarize_batches(batches: List[Batch]) -> BatchProgress:
    """Count batches per state and pages processed so far."""
    return BatchProgress(
        total_batches=len(batches),
        pending=sum(1 for b in batches if b.estado == BatchState.PENDIENTE),
        processing=sum(1 for b in batches if b.estado == BatchState.PROCESANDO),
        completed=sum(1 for b in batches if b.estado == BatchState.COMPLETADO),
        errored=sum(1 for b in batches if b.estado == BatchState.ERROR),
        pages_total=sum(b.pages_in_batch for b in batches),
        pages_processed=sum(b.pages_processed for b in batches),
    )
