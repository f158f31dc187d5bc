"""Protocol definitions for diet_parser.

This module defines the interfaces the pipeline consumes. Using Protocols
lets tests pass fakes (an in-memory page source, a scripted provider) without
inheriting from the real implementations.

Example:
    >>> class ScriptedProvider:
    ...     async def invoke(self, prompt, pdf_bytes=None, images=()):
    ...         return '{"recipes": []}'
    ...
    >>> isinstance(ScriptedProvider(), ProviderCapability)
    True
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Recipe
    from .schema import MealType


@runtime_checkable
class ProviderCapability(Protocol):
    """An AI provider that turns a prompt (plus optional PDF or images) into text.

    Implementations raise ``RetryableError`` for transient failures and
    ``ExtractionTransportFailure`` for permanent ones.
    """

    async def invoke(
        self,
        prompt: str,
        pdf_bytes: bytes | None = None,
        images: Sequence[bytes] = (),
    ) -> str:
        """Send a prompt and return the raw response text.

        Args:
            prompt: Instruction text
            pdf_bytes: Whole PDF for providers that read PDFs directly
            images: PNG page images for providers that do not

        Returns:
            Raw response text, expected to be a JSON object
        """
        ...


@runtime_checkable
class PageSource(Protocol):
    """Access to the pages of a PDF file."""

    def page_texts(self, path: Path) -> list[str]:
        """Plain text of every page, in order.

        Raises:
            PdfProcessingError: If the file cannot be read
        """
        ...

    def render_pages(self, path: Path, page_numbers: Iterable[int]) -> list[bytes]:
        """PNG images of the given 1-based pages."""
        ...

    def read_bytes(self, path: Path) -> bytes:
        """Raw file contents."""
        ...


@runtime_checkable
class RecipeStore(Protocol):
    """The recipe operations the pipeline relies on."""

    def insert(self, recipe: Recipe) -> Recipe:
        """Persist a new recipe.

        Raises:
            PersistenceFailure: If the write fails
        """
        ...

    def update(self, recipe: Recipe) -> Recipe:
        ...

    def delete(self, recipe_id: str) -> bool:
        ...

    def list_by_meal_type(self, meal_type: MealType | None = None) -> list[Recipe]:
        ...

    def count(self, meal_type: MealType | None = None) -> int:
        ...

    def exists_by_name(self, name: str) -> bool:
        ...

    def recent_names(self, limit: int) -> list[str]:
        ...
