"""Processing ledger: which source PDFs have already been extracted.

A file counts as processed when a ``ProcessedFile`` row with its current
content checksum exists. Rows are keyed by filename, so editing a PDF and
running again replaces its row instead of adding a second one.

Completion is only recorded after every recipe of the file has been
persisted. A crash mid-run therefore leaves finished files marked and the
interrupted file unmarked, and the next run resumes with that file.

Example:
    >>> ledger = ProcessingLedger(database)
    >>> doc = SourceDocument.from_path(Path("pdfs/tydzien-1.pdf"))
    >>> if ledger.should_process(doc):
    ...     recipes = await processor.process_document(doc)
    ...     ledger.record_completion(doc, len(recipes))
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .db import Database
from .exceptions import PdfProcessingError, PersistenceFailure
from .models import ProcessedFile

logger = logging.getLogger(__name__)

_READ_BLOCK = 1024 * 1024


def file_checksum(path: Path) -> str:
    """SHA-256 of a file's contents as upper-case hex.

    Raises:
        PdfProcessingError: If the file cannot be read
    """
    digest = hashlib.sha256()
    try:
        with path.open("rb") as f:
            for block in iter(lambda: f.read(_READ_BLOCK), b""):
                digest.update(block)
    except OSError as e:
        raise PdfProcessingError(
            "Could not read file for checksum",
            path=str(path),
            error=str(e),
        ) from e
    return digest.hexdigest().upper()


@dataclass(frozen=True)
class SourceDocument:
    """A discovered source file identified by path, checksum and size.

    The checksum is computed once when the document is created.
    """

    path: Path
    checksum: str
    size_bytes: int

    @classmethod
    def from_path(cls, path: Path) -> SourceDocument:
        """Create a document from a file on disk, computing its checksum.

        Raises:
            PdfProcessingError: If the file does not exist or cannot be read
        """
        path = Path(path)
        if not path.is_file():
            raise PdfProcessingError("File not found", path=str(path))
        return cls(path=path, checksum=file_checksum(path), size_bytes=path.stat().st_size)

    @property
    def filename(self) -> str:
        return self.path.name


class ProcessingLedger:
    """Checksum-based record of completed source documents.

    Attributes:
        database: Database holding the ``processed_files`` table
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def should_process(self, doc: SourceDocument) -> bool:
        """Return False if a record with the document's checksum exists."""
        stmt = select(ProcessedFile.id).where(ProcessedFile.checksum == doc.checksum).limit(1)
        with self.database.session() as session:
            done = session.scalar(stmt) is not None
        if done:
            logger.info(f"Skipping {doc.filename}: already processed")
        return not done

    def record_completion(self, doc: SourceDocument, recipes_extracted: int) -> ProcessedFile:
        """Mark a document as processed.

        Upserts by filename: a row for the same filename with a different
        checksum is replaced in place.

        Args:
            doc: The processed document
            recipes_extracted: Number of recipes saved from it

        Returns:
            The stored ledger row

        Raises:
            PersistenceFailure: If the ledger cannot be written
        """
        try:
            with self.database.session() as session:
                row = session.scalar(
                    select(ProcessedFile).where(ProcessedFile.filename == doc.filename)
                )
                if row is None:
                    row = ProcessedFile(filename=doc.filename)
                    session.add(row)
                elif row.checksum != doc.checksum:
                    logger.info(f"{doc.filename} changed since last run, replacing ledger entry")
                row.checksum = doc.checksum
                row.size_bytes = doc.size_bytes
                row.recipes_extracted = recipes_extracted
                row.processed_at = datetime.now(UTC)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(
                "Could not record processed file",
                file=doc.filename,
                error=str(e),
            ) from e
        logger.info(f"Recorded {doc.filename}: {recipes_extracted} recipes")
        return row

    def records(self) -> list[ProcessedFile]:
        """All ledger rows, most recently processed first."""
        stmt = select(ProcessedFile).order_by(ProcessedFile.processed_at.desc())
        with self.database.session() as session:
            return list(session.scalars(stmt))

    def forget(self, filename: str) -> bool:
        """Remove a file's row so the next run processes it again.

        Returns:
            True if a row was removed
        """
        with self.database.session() as session:
            row = session.scalar(select(ProcessedFile).where(ProcessedFile.filename == filename))
            if row is None:
                return False
            session.delete(row)
            session.commit()
        logger.info(f"Removed {filename} from the processing ledger")
        return True
