import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from tqdm import tqdm

from .batch import BatchProgress, BatchSplitter, summarize_batches
from .config import PAGES_OUTPUT_DIR
from .estimator import PageCountEstimator
from .exceptions import InvalidInput, PageExtractionError
from .models import Batch, PageCountEstimate, PageUnit, UploadSession
from .session_manager import SessionLifecycleManager
from .utils.pdf import PDFPageExtractor, count_pages, is_already_split

logger = logging.getLogger(__name__)


@dataclass
class DocumentIngest:
    """How one source document was turned into page units."""

    document_name: str
    estimate: PageCountEstimate
    batches: List[Batch] = field(default_factory=list)
    page_units: List[PageUnit] = field(default_factory=list)

    @property
    def progress(self) -> BatchProgress:
        return summarize_batches(self.batches)


@dataclass
class IngestResult:
    session: UploadSession
    documents: List[DocumentIngest] = field(default_factory=list)


class IngestPipeline:
    """
    Turns submitted documents into the file entries of a session.

    Each document is estimated, split into bounded batches and every batch
    is exploded into single-page units. A failing batch is marked as such
    and does not affect its siblings.
    """

    def __init__(
        self,
        manager: SessionLifecycleManager,
        estimator: PageCountEstimator = None,
        splitter: BatchSplitter = None,
        extractor: PDFPageExtractor = None,
        output_dir: Union[str, Path] = None,
    ):
        self.manager = manager
        self.estimator = estimator or PageCountEstimator(page_reader=count_pages)
        self.splitter = splitter or BatchSplitter()
        self.output_dir = Path(output_dir or PAGES_OUTPUT_DIR)
        self.extractor = extractor or PDFPageExtractor(self.output_dir)

    def ingest(
        self,
        user_id: str,
        document_paths: Sequence[Union[str, Path]],
        session_id: Optional[str] = None,
    ) -> IngestResult:
        """
        Register every page of the given documents in a session.

        Args:
            user_id: Opaque id of the owning user
            document_paths: Source PDFs in submission order
            session_id: Existing session to append to (chunked uploads)

        Returns:
            IngestResult with the stored session and per-document details
        """
        if not document_paths:
            raise InvalidInput("At least one document is required")

        documents = [self.prepare_document(path) for path in document_paths]
        units = [unit for doc in documents for unit in doc.page_units]
        if not units:
            raise PageExtractionError("No pages could be extracted from the submitted documents")

        file_names = [unit.file_name for unit in units]
        sources = [unit.path for unit in units]

        if session_id:
            session = self.manager.append_files(session_id, file_names, sources)
        else:
            session = self.manager.create_session(user_id, file_names, sources)

        logger.info(
            f"Ingested {len(documents)} documents into session {session.session_id} "
            f"({len(units)} page units)"
        )
        return IngestResult(session=session, documents=documents)

    def prepare_document(self, document_path: Union[str, Path]) -> DocumentIngest:
        """Estimate, split and extract one document."""
        document_path = Path(document_path)
        name = document_path.name
        estimate = self.estimator.estimate_file(document_path)
        logger.info(f"{name}: {estimate.page_count} pages ({estimate.method.value})")

        if estimate.page_count == 1 or is_already_split(name):
            # The submitted file is the only page unit
            batches = self.splitter.split(1)
            batches[0].start()
            batches[0].complete()
            unit = PageUnit(file_name=name, page_number=1, path=str(document_path))
            return DocumentIngest(document_name=name, estimate=estimate, batches=batches, page_units=[unit])

        batches = self.splitter.split_estimate(estimate)
        target_dir = self.output_dir / f"{document_path.stem}_{uuid.uuid4().hex[:8]}"
        document = DocumentIngest(document_name=name, estimate=estimate, batches=batches)

        for batch in tqdm(batches, desc=f"Splitting {name}"):
            batch.start()
            try:
                units = self.extractor.extract_batch(document_path, batch, target_dir)
            except PageExtractionError as e:
                logger.error(f"Lote {batch.id}/{batch.total_batches} of {name} failed: {str(e)}")
                batch.fail()
                continue
            batch.complete(len(units))
            document.page_units.extend(units)

        progress = document.progress
        logger.info(
            f"{name}: {progress.completed}/{progress.total_batches} lotes completed, "
            f"{progress.errored} with errors, {len(document.page_units)} pages extracted"
        )
        return document
