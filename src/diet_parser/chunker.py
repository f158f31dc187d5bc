"""Split a PDF's pages into windows a provider can take in one call.

Providers cap how many pages they accept per request (``max_pages_per_chunk``
on the provider configuration). The chunker groups consecutive pages into
windows of at most that size without ever splitting a page.

Example:
    >>> chunks = list(chunk_pages(["p1", "p2", "p3", "p4"], 3))
    >>> [(c.start_page, c.end_page) for c in chunks]
    [(1, 3), (4, 4)]
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from .exceptions import InvalidConfiguration

PAGE_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class Chunk:
    """An ordered window of pages from one source document.

    Attributes:
        number: 1-based position of the chunk within the document
        start_page: First page in the window (1-based, inclusive)
        end_page: Last page in the window (1-based, inclusive)
        total_pages: Page count of the whole document
        pages: Text of each page in the window, in order
        pdf_bytes: Whole-document PDF payload for providers that read PDFs
            directly; None when pages are sent as text and images
    """

    number: int
    start_page: int
    end_page: int
    total_pages: int
    pages: tuple[str, ...]
    pdf_bytes: bytes | None = None

    @property
    def text(self) -> str:
        """Page texts joined with blank lines."""
        return PAGE_SEPARATOR.join(self.pages)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def page_numbers(self) -> range:
        """1-based page numbers covered by this chunk."""
        return range(self.start_page, self.end_page + 1)


def chunk_pages(page_texts: Sequence[str], max_pages_per_chunk: int) -> Iterator[Chunk]:
    """Split page texts into consecutive windows of at most ``max_pages_per_chunk``.

    The size is validated immediately; chunks are then produced lazily.

    Args:
        page_texts: Text of each page, in document order
        max_pages_per_chunk: Maximum pages per window

    Returns:
        Iterator of chunks; ceil(len(page_texts) / max_pages_per_chunk) of them

    Raises:
        InvalidConfiguration: If max_pages_per_chunk is not positive
    """
    if isinstance(max_pages_per_chunk, bool) or max_pages_per_chunk <= 0:
        raise InvalidConfiguration(
            "max_pages_per_chunk must be a positive integer",
            max_pages_per_chunk=max_pages_per_chunk,
        )
    return _iter_chunks(tuple(page_texts), max_pages_per_chunk)


def _iter_chunks(pages: tuple[str, ...], size: int) -> Iterator[Chunk]:
    total = len(pages)
    for number, start in enumerate(range(0, total, size), 1):
        window = pages[start : start + size]
        yield Chunk(
            number=number,
            start_page=start + 1,
            end_page=start + len(window),
            total_pages=total,
            pages=window,
        )


def whole_document_chunk(page_texts: Sequence[str], pdf_bytes: bytes) -> Chunk:
    """Build the single chunk used when a provider accepts the PDF itself."""
    pages = tuple(page_texts)
    return Chunk(
        number=1,
        start_page=1,
        end_page=max(len(pages), 1),
        total_pages=len(pages),
        pages=pages,
        pdf_bytes=pdf_bytes,
    )
