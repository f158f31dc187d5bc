"""PDF access through PyMuPDF.

Reads per-page text, renders pages to PNG for providers that cannot take a
PDF directly, and discovers PDF files under a directory.

Example:
    >>> reader = PdfReader(dpi=150)
    >>> texts = reader.page_texts(Path("pdfs/tydzien-1.pdf"))
    >>> images = reader.render_pages(Path("pdfs/tydzien-1.pdf"), [1, 2, 3])
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import fitz  # PyMuPDF

from .exceptions import PdfProcessingError

logger = logging.getLogger(__name__)


def discover_pdfs(directory: Path) -> list[Path]:
    """Find all PDF files under a directory, recursively, in sorted order.

    Raises:
        PdfProcessingError: If the directory does not exist
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise PdfProcessingError("PDF source directory not found", path=str(directory))
    paths = sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() == ".pdf")
    logger.info(f"Found {len(paths)} PDF files in {directory}")
    return paths


class PdfReader:
    """Page text and image access for PDF files.

    Attributes:
        dpi: Resolution used by ``render_pages``
    """

    def __init__(self, dpi: int = 150) -> None:
        self.dpi = dpi

    def _open(self, path: Path) -> fitz.Document:
        try:
            return fitz.open(str(path))
        except (RuntimeError, OSError) as e:  # fitz.FileDataError is a RuntimeError
            raise PdfProcessingError(
                "Could not open PDF",
                path=str(path),
                error=str(e),
            ) from e

    def page_texts(self, path: Path) -> list[str]:
        """Plain text of every page, in page order.

        Raises:
            PdfProcessingError: If the file is missing or not a readable PDF
        """
        with self._open(path) as doc:
            texts = [page.get_text("text") or "" for page in doc]
        logger.debug(f"Read {len(texts)} pages from {path.name}")
        return texts

    def page_count(self, path: Path) -> int:
        with self._open(path) as doc:
            return doc.page_count

    def render_pages(self, path: Path, page_numbers: Iterable[int]) -> list[bytes]:
        """Render pages to PNG bytes.

        Args:
            path: PDF file
            page_numbers: 1-based page numbers to render

        Returns:
            One PNG image per requested page, in the order requested

        Raises:
            PdfProcessingError: If the file cannot be opened or a page is out of range
        """
        zoom = self.dpi / 72
        matrix = fitz.Matrix(zoom, zoom)
        images: list[bytes] = []
        with self._open(path) as doc:
            for number in page_numbers:
                # fitz pages are 0-indexed
                if not 1 <= number <= doc.page_count:
                    raise PdfProcessingError(
                        "Page out of range",
                        path=str(path),
                        page=number,
                        page_count=doc.page_count,
                    )
                pixmap = doc[number - 1].get_pixmap(matrix=matrix)
                images.append(pixmap.tobytes("png"))
        return images

    @staticmethod
    def read_bytes(path: Path) -> bytes:
        """Raw file contents for providers that accept PDFs directly.

        Raises:
            PdfProcessingError: If the file cannot be read
        """
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise PdfProcessingError("Could not read PDF", path=str(path), error=str(e)) from e
