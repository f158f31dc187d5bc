"""Pipeline architecture for recipe extraction.

This module implements the batch processor that turns diet-plan PDFs into
stored recipes. Each document passes through explicit stages sharing one
``DocumentContext``:

1. **Chunking**: page texts -> page windows (or one whole-PDF chunk)
2. **Extraction**: one provider call per chunk, sequential, with a delay
3. **Merge**: candidates -> deduplicated Recipe entities
4. **Persistence**: per-recipe inserts, skipping names already stored
5. **Ledger**: mark the document processed

Documents are processed one at a time. Failures are contained at the
smallest unit they affect (chunk, recipe, file) and counted in the
``ProcessingStatus``; only ``InvalidConfiguration`` stops a run.

Example:
    >>> processor = factory.create_processor()
    >>> summary = await processor.run(discover_pdfs(Path("pdfs")))
    >>> print(summary.describe())
    Extracted 42 recipes from 17 chunks with 1 error
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .chunker import Chunk, chunk_pages, whole_document_chunk
from .config import ExtractionConfig
from .exceptions import (
    ExtractionTransportFailure,
    InvalidConfiguration,
    PdfProcessingError,
    PersistenceFailure,
)
from .extraction import ExtractionAdapter, ExtractionRecord
from .ledger import ProcessingLedger, SourceDocument
from .merge import merge_records
from .models import Recipe
from .protocols import PageSource, RecipeStore
from .providers import AIProviderConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class ProcessingStatus:
    """Pollable progress of a processing run.

    Attributes:
        is_running: True while a run is in progress
        files_processed: Documents completed in this run
        recipes_saved: Recipes inserted in this run
        errors: Failed chunks, recipes and files in this run
        total_files: Documents passed to the run
        current_file: Name of the document being processed
        total_chunks: Chunks of the current document
        current_chunk: Chunk being extracted
        files_skipped: Documents the ledger marked as already processed
        duplicates_skipped: Recipes not inserted because the name was stored
        last_error: Text of the most recent error
        message: Human-readable state
    """

    is_running: bool = False
    files_processed: int = 0
    recipes_saved: int = 0
    errors: int = 0
    total_files: int = 0
    current_file: str | None = None
    total_chunks: int = 0
    current_chunk: int = 0
    files_skipped: int = 0
    duplicates_skipped: int = 0
    last_error: str | None = None
    message: str = "Idle"

    def record_error(self, error: Exception | str) -> None:
        self.errors += 1
        self.last_error = str(error)

    def snapshot(self) -> dict[str, Any]:
        """Copy of the status for pollers, with camelCase keys."""
        return {
            "isRunning": self.is_running,
            "filesProcessed": self.files_processed,
            "recipesSaved": self.recipes_saved,
            "errors": self.errors,
            "totalFiles": self.total_files,
            "currentFile": self.current_file,
            "totalChunks": self.total_chunks,
            "currentChunk": self.current_chunk,
            "filesSkipped": self.files_skipped,
            "duplicatesSkipped": self.duplicates_skipped,
            "lastError": self.last_error,
            "message": self.message,
        }


@dataclass
class RunSummary:
    """Totals reported at the end of a run."""

    recipes_extracted: int = 0
    recipes_saved: int = 0
    chunks_attempted: int = 0
    errors: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    duplicates_skipped: int = 0
    cancelled: bool = False

    def describe(self) -> str:
        """One-line summary: recipes extracted vs chunks attempted vs errors."""
        noun = "error" if self.errors == 1 else "errors"
        return (
            f"Extracted {self.recipes_extracted} recipes from {self.chunks_attempted} chunks "
            f"with {self.errors} {noun}"
        )


@dataclass
class DocumentContext:
    """Shared state passed through the stages for one document.

    Attributes:
        doc: Document being processed
        provider: Provider configuration for this run
        config: Extraction configuration

        page_texts: Text of every page (populated by ChunkingStage)
        chunks: Chunks to extract (populated by ChunkingStage)
        records: One record per chunk (populated by ExtractionStage)
        recipes: Merged recipes (populated by MergeStage)
        saved: Recipes inserted (populated by PersistenceStage)
        duplicates_skipped: Recipes whose name was already stored
        persistence_errors: Recipes that failed to insert
    """

    # Required inputs
    doc: SourceDocument
    provider: AIProviderConfig
    config: ExtractionConfig

    # Populated by stages
    page_texts: list[str] = field(default_factory=list)
    chunks: list[Chunk] = field(default_factory=list)
    records: list[ExtractionRecord] = field(default_factory=list)
    recipes: list[Recipe] = field(default_factory=list)
    saved: list[Recipe] = field(default_factory=list)
    duplicates_skipped: int = 0
    persistence_errors: int = 0

    # Progress tracking
    progress_callback: ProgressCallback | None = None

    @property
    def failed_records(self) -> list[ExtractionRecord]:
        return [r for r in self.records if not r.is_success]

    def report_progress(self, stage: str, current: int, total: int) -> None:
        """Report progress to callback if set."""
        if self.progress_callback:
            self.progress_callback(stage, current, total)


class PipelineStage(ABC):
    """Abstract base class for pipeline stages.

    Stages keep no state of their own; everything lives in the context or
    on the processor's collaborators.

    Example:
        >>> class CountPagesStage(PipelineStage):
        ...     @property
        ...     def name(self) -> str:
        ...         return "CountPages"
        ...
        ...     async def execute(self, ctx, processor) -> None:
        ...         logger.info(f"{len(ctx.page_texts)} pages")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this stage."""
        ...

    @abstractmethod
    async def execute(self, ctx: DocumentContext, processor: RecipeProcessor) -> None:
        """Execute this pipeline stage.

        Args:
            ctx: Document context with shared state
            processor: Processor owning the collaborators and run status
        """
        ...


class ChunkingStage(PipelineStage):
    """Stage 1: Read the PDF and split it into chunks.

    Providers that accept PDFs get a single chunk carrying the whole file;
    the others get page windows of ``max_pages_per_chunk`` pages.

    Populates:
        - ctx.page_texts
        - ctx.chunks
    """

    @property
    def name(self) -> str:
        return "Chunking"

    async def execute(self, ctx: DocumentContext, processor: RecipeProcessor) -> None:
        ctx.page_texts = processor.reader.page_texts(ctx.doc.path)
        if ctx.provider.supports_direct_pdf:
            pdf_bytes = processor.reader.read_bytes(ctx.doc.path)
            ctx.chunks = [whole_document_chunk(ctx.page_texts, pdf_bytes)]
        else:
            ctx.chunks = list(chunk_pages(ctx.page_texts, ctx.provider.max_pages_per_chunk))
        logger.info(
            f"{ctx.doc.filename}: {len(ctx.page_texts)} pages -> {len(ctx.chunks)} chunks"
        )


class ExtractionStage(PipelineStage):
    """Stage 2: Extract candidates from every chunk, one call at a time.

    Waits ``delay_between_chunks`` seconds between successive calls. Failed
    chunks are counted and skipped.

    Populates:
        - ctx.records
    """

    @property
    def name(self) -> str:
        return "Extraction"

    async def execute(self, ctx: DocumentContext, processor: RecipeProcessor) -> None:
        status = processor.status
        status.total_chunks = len(ctx.chunks)
        recent_names = processor.repository.recent_names(ctx.config.recent_recipes_context)
        extracted_names: list[str] = []

        for index, chunk in enumerate(ctx.chunks):
            if index > 0 and ctx.config.delay_between_chunks > 0:
                await asyncio.sleep(ctx.config.delay_between_chunks)

            status.current_chunk = chunk.number
            status.message = f"Extracting {ctx.doc.filename} chunk {chunk.number}/{len(ctx.chunks)}"
            ctx.report_progress(self.name, chunk.number, len(ctx.chunks))

            images: list[bytes] = []
            if chunk.pdf_bytes is None:
                images = processor.reader.render_pages(ctx.doc.path, chunk.page_numbers)

            record = await processor.adapter.extract(
                chunk,
                ctx.provider,
                recent_names=recent_names,
                already_in_document=extracted_names,
                images=images,
                source_name=ctx.doc.filename,
            )
            ctx.records.append(record)
            processor.chunks_attempted += 1
            if record.error is not None:
                status.record_error(record.error)
            extracted_names.extend(r.name for r in record.recipes if r.name.strip())


class MergeStage(PipelineStage):
    """Stage 3: Merge candidates into deduplicated recipes.

    Populates:
        - ctx.recipes
    """

    @property
    def name(self) -> str:
        return "Merge"

    async def execute(self, ctx: DocumentContext, processor: RecipeProcessor) -> None:
        ctx.recipes = merge_records(
            ctx.records,
            default_meal_type=ctx.config.fallback_meal_type,
            source_file=ctx.doc.filename,
        )


class PersistenceStage(PipelineStage):
    """Stage 4: Insert recipes one by one.

    With ``check_duplicates`` a recipe whose name is already stored is
    skipped. A failed insert is counted and the remaining recipes are still
    attempted.

    Populates:
        - ctx.saved
        - ctx.duplicates_skipped
        - ctx.persistence_errors
    """

    @property
    def name(self) -> str:
        return "Persistence"

    async def execute(self, ctx: DocumentContext, processor: RecipeProcessor) -> None:
        status = processor.status
        for i, recipe in enumerate(ctx.recipes, 1):
            ctx.report_progress(self.name, i, len(ctx.recipes))
            try:
                if ctx.config.check_duplicates and processor.repository.exists_by_name(recipe.name):
                    logger.info(f"Skipping duplicate recipe: {recipe.name}")
                    ctx.duplicates_skipped += 1
                    status.duplicates_skipped += 1
                    continue
                processor.repository.insert(recipe)
            except PersistenceFailure as e:
                logger.error(str(e))
                ctx.persistence_errors += 1
                status.record_error(e)
                continue
            ctx.saved.append(recipe)
            status.recipes_saved += 1
        logger.info(
            f"{ctx.doc.filename}: saved {len(ctx.saved)} recipes, "
            f"skipped {ctx.duplicates_skipped} duplicates"
        )


class LedgerStage(PipelineStage):
    """Stage 5: Mark the document processed.

    Documents with a chunk that failed in transport, or a recipe that failed
    to insert, stay unmarked so the next run picks them up again.
    """

    @property
    def name(self) -> str:
        return "Ledger"

    async def execute(self, ctx: DocumentContext, processor: RecipeProcessor) -> None:
        transport_failures = [
            r for r in ctx.failed_records if isinstance(r.error, ExtractionTransportFailure)
        ]
        if transport_failures or ctx.persistence_errors:
            logger.warning(
                f"{ctx.doc.filename}: not marking as processed "
                f"({len(transport_failures)} failed chunks, "
                f"{ctx.persistence_errors} failed inserts)"
            )
            return
        processor.ledger.record_completion(ctx.doc, len(ctx.recipes))


def default_stages() -> list[PipelineStage]:
    """The standard stage sequence."""
    return [
        ChunkingStage(),
        ExtractionStage(),
        MergeStage(),
        PersistenceStage(),
        LedgerStage(),
    ]


class RecipeProcessor:
    """Sequential batch processor for diet-plan PDFs.

    One processor runs one batch at a time. The status can be polled while a
    run is in progress, and ``cancel`` stops the run before the next file.

    Attributes:
        config: Extraction configuration
        provider: Provider configuration used for every chunk
        adapter: Extraction adapter
        repository: Recipe store
        ledger: Processing ledger
        reader: PDF page source
        status: Progress of the current or last run

    Example:
        >>> processor = RecipeProcessor(config, provider, adapter, repository, ledger, reader)
        >>> summary = await processor.run([Path("pdfs/a.pdf"), Path("pdfs/b.pdf")])
    """

    def __init__(
        self,
        config: ExtractionConfig,
        provider: AIProviderConfig,
        adapter: ExtractionAdapter,
        repository: RecipeStore,
        ledger: ProcessingLedger,
        reader: PageSource,
        stages: list[PipelineStage] | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.adapter = adapter
        self.repository = repository
        self.ledger = ledger
        self.reader = reader
        self.stages = stages if stages is not None else default_stages()
        self.progress_callback = progress_callback
        self.status = ProcessingStatus()
        self.chunks_attempted = 0
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop the run before the next file; the current file is finished."""
        if self.status.is_running:
            logger.info("Cancellation requested")
            self._cancel_requested = True
            self.status.message = "Cancelling after current file"

    async def process_document(self, doc: SourceDocument) -> DocumentContext:
        """Run every stage for one document.

        Raises:
            PdfProcessingError: If the PDF cannot be read
            PersistenceFailure: If the ledger cannot be written
            InvalidConfiguration: If the provider cannot be used
        """
        ctx = DocumentContext(
            doc=doc,
            provider=self.provider,
            config=self.config,
            progress_callback=self.progress_callback,
        )
        for stage in self.stages:
            logger.debug(f"{doc.filename}: starting stage {stage.name}")
            await stage.execute(ctx, self)
        return ctx

    async def run(self, paths: Sequence[Path]) -> RunSummary:
        """Process documents one after another.

        Documents the ledger marks as processed are skipped without any
        provider call.

        Args:
            paths: PDF files, processed in the given order

        Returns:
            Totals for this run

        Raises:
            InvalidConfiguration: If a run is already in progress, or the
                provider configuration is unusable
        """
        if self.status.is_running:
            raise InvalidConfiguration("Processing is already running")

        self.status = ProcessingStatus(is_running=True, total_files=len(paths), message="Starting")
        self.chunks_attempted = 0
        self._cancel_requested = False
        summary = RunSummary()
        logger.info(f"Processing {len(paths)} files with {self.provider.name} ({self.provider.model})")

        try:
            for path in paths:
                if self._cancel_requested:
                    logger.info("Run cancelled")
                    summary.cancelled = True
                    break
                await self._process_path(Path(path), summary)
        finally:
            self.status.is_running = False
            self.status.current_file = None
            self.status.message = "Cancelled" if summary.cancelled else "Finished"

        summary.recipes_saved = self.status.recipes_saved
        summary.chunks_attempted = self.chunks_attempted
        summary.errors = self.status.errors
        summary.files_processed = self.status.files_processed
        summary.files_skipped = self.status.files_skipped
        summary.duplicates_skipped = self.status.duplicates_skipped
        logger.info(summary.describe())
        return summary

    async def _process_path(self, path: Path, summary: RunSummary) -> None:
        """Process one file, containing per-file failures."""
        status = self.status
        status.current_file = path.name
        status.current_chunk = 0
        status.total_chunks = 0
        try:
            doc = SourceDocument.from_path(path)
            if not self.ledger.should_process(doc):
                status.files_skipped += 1
                return
            status.message = f"Processing {doc.filename}"
            ctx = await self.process_document(doc)
        except (PdfProcessingError, PersistenceFailure) as e:
            logger.error(f"Failed to process {path.name}: {e}")
            status.record_error(e)
            return
        summary.recipes_extracted += len(ctx.recipes)
        status.files_processed += 1
