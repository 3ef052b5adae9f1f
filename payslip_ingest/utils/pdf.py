"""
PDF utility functions for counting and extracting pages.
"""

import io
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from pypdf import PdfReader, PdfWriter

from ..exceptions import PageExtractionError
from ..models import Batch, PageUnit

logger = logging.getLogger(__name__)

PdfSource = Union[str, Path, bytes, BinaryIO]

SPLIT_PAGE_MARKER = "_pagina"


def _open_reader(source: PdfSource) -> PdfReader:
    if isinstance(source, (bytes, bytearray)):
        return PdfReader(io.BytesIO(source))
    if isinstance(source, (str, Path)):
        return PdfReader(str(source))
    return PdfReader(source)


def count_pages(source: PdfSource) -> int:
    """
    Read the exact page count of a PDF.

    Args:
        source: Path, raw bytes or binary stream of the PDF

    Returns:
        Number of pages in the document
    """
    reader = _open_reader(source)
    return len(reader.pages)


def is_already_split(file_name: str) -> bool:
    """Pages produced by a previous split must never be split again."""
    return SPLIT_PAGE_MARKER in Path(file_name).stem.lower()


def page_file_name(document_name: str, page_number: int) -> str:
    """Display name of one page of a split document, e.g. ``J092025_pagina3.pdf``."""
    stem = Path(document_name).stem
    return f"{stem}{SPLIT_PAGE_MARKER}{page_number}.pdf"


class PDFPageExtractor:
    """
    Explodes one batch of a PDF document into single-page documents.

    This class is responsible for:
    1. Opening the source document once per batch
    2. Writing every page of the batch range as its own PDF
    3. Dropping pages the batch claims but the document does not have
       (the batch may come from a heuristic page estimate)
    """

    def __init__(self, output_dir: Union[str, Path]):
        """
        Initialize the page extractor.

        Args:
            output_dir: Directory where single-page PDFs are written
        """
        self.output_dir = Path(output_dir)

    def extract_batch(
        self,
        document_path: Union[str, Path],
        batch: Batch,
        output_dir: Optional[Union[str, Path]] = None,
    ) -> List[PageUnit]:
        """
        Extract the pages of a batch.

        Args:
            document_path: Path to the source PDF
            batch: Page range to extract
            output_dir: Override of the extractor output directory

        Returns:
            List of PageUnit objects in page order
        """
        document_path = Path(document_path)
        logger.info(
            f"Extracting pages {batch.page_range_start}-{batch.page_range_end} "
            f"(lote {batch.id}/{batch.total_batches}) from {document_path.name}"
        )

        try:
            reader = PdfReader(str(document_path))
            real_page_count = len(reader.pages)
        except Exception as e:
            logger.error(f"Error opening PDF {document_path}: {str(e)}")
            raise PageExtractionError(f"Cannot read {document_path.name}: {e}") from e

        last_page = min(batch.page_range_end, real_page_count)
        if last_page < batch.page_range_end:
            logger.warning(
                f"{document_path.name} has {real_page_count} pages; "
                f"dropping pages {max(last_page + 1, batch.page_range_start)}-{batch.page_range_end} of lote {batch.id}"
            )

        target_dir = Path(output_dir) if output_dir is not None else self.output_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        page_units = []

        for page_number in range(batch.page_range_start, last_page + 1):
            name = page_file_name(document_path.name, page_number)
            target = target_dir / name

            try:
                writer = PdfWriter()
                writer.add_page(reader.pages[page_number - 1])  # 1-based page numbers
                with open(target, "wb") as f:
                    writer.write(f)
            except Exception as e:
                logger.error(f"Error writing page {page_number} of {document_path.name}: {str(e)}")
                raise PageExtractionError(
                    f"Cannot extract page {page_number} of {document_path.name}: {e}"
                ) from e

            page_units.append(PageUnit(file_name=name, page_number=page_number, path=str(target)))

        logger.info(f"Extracted {len(page_units)} pages from lote {batch.id}")
        return page_units
