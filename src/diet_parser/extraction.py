"""Extraction client adapter: one provider call per chunk.

The adapter builds the prompt for a chunk, invokes the provider capability
with retries on transient failures, and turns the raw text into an
``ExtractionRecord``. It never raises for a bad response or a failed call:
the failure is stored on the record so the caller can count it and move on
to the next chunk. Only ``InvalidConfiguration`` (e.g. a missing API key)
escapes.

Example:
    >>> adapter = ExtractionAdapter(retry=RetryConfig(max_attempts=3, delay=1.0))
    >>> record = await adapter.extract(chunk, provider_config)
    >>> if record.is_success:
    ...     print(f"{record.recipe_count} recipes")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from .chunker import Chunk
from .exceptions import (
    ExtractionFailure,
    ExtractionParseFailure,
    ExtractionTransportFailure,
    RetryableError,
)
from .prompts import build_extraction_prompt
from .protocols import ProviderCapability
from .providers import AIProviderConfig, create_capability
from .retry import RetryConfig, with_retry
from .schema import ExtractedRecipe, ExtractionResponse

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_PREVIEW_CHARS = 200


@dataclass
class ExtractionRecord:
    """Result of extracting one chunk.

    Attributes:
        chunk_number: Chunk this record belongs to (1-based)
        recipes: Candidate recipes, untrusted until merged
        error: Failure that occurred, or None on success
        retry_count: Number of retries spent on transient failures
    """

    chunk_number: int
    recipes: list[ExtractedRecipe] = field(default_factory=list)
    error: ExtractionFailure | None = None
    retry_count: int = 0

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def recipe_count(self) -> int:
        return len(self.recipes)


def salvage_json(text: str) -> str:
    """Strip markdown code fences and prose around a JSON object.

    Example:
        >>> salvage_json('Here you go:\\n```json\\n{"recipes": []}\\n```')
        '{"recipes": []}'
    """
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return text.strip()
    return text[start : end + 1]


def parse_json_response(text: str, model: type[ModelT], **context: str | int | None) -> ModelT:
    """Validate a provider response against a schema, salvaging it once.

    Args:
        text: Raw response text
        model: Expected top-level schema
        **context: Added to the error on failure (chunk number, file, ...)

    Returns:
        The validated model

    Raises:
        ExtractionParseFailure: If neither the raw nor the salvaged text validates
    """
    try:
        return model.model_validate_json(text)
    except ValidationError as first_error:
        salvaged = salvage_json(text)
        try:
            result = model.model_validate_json(salvaged)
        except ValidationError as e:
            reason = "Response is not valid JSON" if _is_json_error(e) else "Response does not match schema"
            raise ExtractionParseFailure(
                reason,
                preview=text[:_PREVIEW_CHARS],
                error=str(e.errors()[0]["msg"]) if e.errors() else str(e),
                **context,
            ) from first_error
        logger.debug(f"Salvaged malformed response ({len(text)} -> {len(salvaged)} chars)")
        return result


def _is_json_error(error: ValidationError) -> bool:
    return any(item.get("type") == "json_invalid" for item in error.errors())


def parse_extraction_response(text: str, chunk_number: int) -> list[ExtractedRecipe]:
    """Parse the ``{"recipes": [...]}`` object returned for a chunk.

    Raises:
        ExtractionParseFailure: If the response cannot be salvaged
    """
    return parse_json_response(text, ExtractionResponse, chunk=chunk_number).recipes


class ExtractionAdapter:
    """Sends chunks to a provider and returns ExtractionRecords.

    Capabilities are created on first use for each provider configuration
    and reused for later chunks.

    Attributes:
        retry: Attempts and fixed delay for transient failures
        debug_dir: When set, prompt and raw response of each call are saved here
    """

    def __init__(
        self,
        retry: RetryConfig | None = None,
        capability_factory: Callable[[AIProviderConfig], ProviderCapability] = create_capability,
        debug_dir: Path | None = None,
    ) -> None:
        self.retry = retry or RetryConfig()
        self.capability_factory = capability_factory
        self.debug_dir = debug_dir
        self._capabilities: dict[AIProviderConfig, ProviderCapability] = {}

    def capability_for(self, provider: AIProviderConfig) -> ProviderCapability:
        """Return the cached capability for a provider, creating it if needed.

        Raises:
            InvalidConfiguration: If the provider cannot be set up
        """
        if provider not in self._capabilities:
            self._capabilities[provider] = self.capability_factory(provider)
        return self._capabilities[provider]

    async def extract(
        self,
        chunk: Chunk,
        provider: AIProviderConfig,
        recent_names: Sequence[str] = (),
        already_in_document: Sequence[str] = (),
        images: Sequence[bytes] = (),
        source_name: str = "document",
    ) -> ExtractionRecord:
        """Extract candidate recipes from one chunk.

        Args:
            chunk: Page window to extract
            provider: Provider configuration to call
            recent_names: Recently stored recipe names the model should skip
            already_in_document: Names extracted from earlier chunks of this document
            images: Rendered page images, for providers without PDF input
            source_name: Document name used in logs and debug output

        Returns:
            Record with the candidates, or with ``error`` set when the call or
            the response failed. An empty recipe list is a normal result.

        Raises:
            InvalidConfiguration: If the provider capability cannot be created
        """
        capability = self.capability_for(provider)
        prompt = build_extraction_prompt(
            chunk,
            recent_names=recent_names,
            already_in_document=already_in_document,
            include_text=chunk.pdf_bytes is None,
        )
        self._save_debug(source_name, chunk.number, "prompt.txt", prompt)

        retries = 0

        def count_retry(attempt: int, error: Exception) -> None:
            nonlocal retries
            retries += 1

        @with_retry(
            max_attempts=self.retry.max_attempts,
            delay=self.retry.delay,
            backoff=self.retry.backoff,
            retryable=(RetryableError,),
            on_retry=count_retry,
        )
        async def call() -> str:
            return await capability.invoke(prompt, pdf_bytes=chunk.pdf_bytes, images=images)

        logger.info(
            f"{source_name} chunk {chunk.number}: pages {chunk.start_page}-{chunk.end_page} "
            f"of {chunk.total_pages} -> {provider.name} ({provider.model})"
        )
        try:
            text = await call()
        except RetryableError as e:
            failure = ExtractionTransportFailure(
                "Provider call failed after retries",
                file=source_name,
                chunk=chunk.number,
                attempts=self.retry.max_attempts,
                error=str(e),
            )
            logger.error(str(failure))
            return ExtractionRecord(chunk.number, error=failure, retry_count=retries)
        except ExtractionTransportFailure as e:
            logger.error(f"{source_name} chunk {chunk.number}: {e}")
            return ExtractionRecord(chunk.number, error=e, retry_count=retries)

        self._save_debug(source_name, chunk.number, "response.txt", text)

        try:
            recipes = parse_extraction_response(text, chunk.number)
        except ExtractionParseFailure as e:
            logger.error(f"{source_name} chunk {chunk.number}: {e}")
            return ExtractionRecord(chunk.number, error=e, retry_count=retries)

        logger.info(f"{source_name} chunk {chunk.number}: {len(recipes)} candidate recipes")
        return ExtractionRecord(chunk.number, recipes=recipes, retry_count=retries)

    def _save_debug(self, source_name: str, chunk_number: int, suffix: str, content: str) -> None:
        """Write one debug artifact for a chunk."""
        if self.debug_dir is None:
            return
        slug = source_name.replace("/", "_").replace(".", "_")
        chunk_dir = self.debug_dir / slug
        chunk_dir.mkdir(parents=True, exist_ok=True)
        path = chunk_dir / f"chunk_{chunk_number:03d}_{suffix}"
        path.write_text(content, encoding="utf-8")
