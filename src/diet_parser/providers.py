"""AI provider configuration and capabilities.

A provider is configured once (name, model, credential, chunking limits) and
stored in the ``ai_providers`` table. At run time the registry selects one
configuration and ``create_capability`` turns it into an object with a single
coroutine:

    await capability.invoke(prompt, pdf_bytes=None, images=()) -> str

Capabilities translate SDK-specific transient failures (timeouts, connection
errors, 5xx responses, rate limits) into ``RetryableError`` and any other API
failure into ``ExtractionTransportFailure``. They never parse the response.

Example:
    >>> registry = ProviderRegistry(database)
    >>> registry.add(AIProviderConfig(name="openai", model="gpt-4.1-mini", is_active=True))
    >>> capability = create_capability(registry.select())
    >>> text = await capability.invoke("Return JSON {...}", pdf_bytes=data)
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from functools import cached_property

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import (
    APIConnectionError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)
from sqlalchemy import select

from .db import Database
from .exceptions import ExtractionTransportFailure, InvalidConfiguration, RetryableError
from .models import AIProvider

logger = logging.getLogger(__name__)

OPENAI_NAMES = frozenset({"openai", "chatgpt"})
GEMINI_NAMES = frozenset({"gemini", "google"})

# Environment variables consulted when a provider row has no credential
CREDENTIAL_ENV = {
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
}


@dataclass(frozen=True)
class AIProviderConfig:
    """Run-time view of one configured provider.

    Attributes:
        name: Provider family ("openai", "gemini")
        model: Model identifier passed to the SDK
        api_key: Credential; None to read it from the environment
        is_active: Overrides priority order when set
        priority: Lower numbers are preferred when no provider is active
        max_pages_per_chunk: Page window size for this provider
        supports_direct_pdf: Send the whole PDF instead of rendered pages
        id: Database id, None for configurations not yet stored
    """

    name: str
    model: str
    api_key: str | None = None
    is_active: bool = False
    priority: int = 100
    max_pages_per_chunk: int = 3
    supports_direct_pdf: bool = False
    id: int | None = None

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise InvalidConfiguration("Provider name must not be empty")
        if not self.model.strip():
            raise InvalidConfiguration("Provider model must not be empty", provider=self.name)
        if isinstance(self.max_pages_per_chunk, bool) or self.max_pages_per_chunk <= 0:
            raise InvalidConfiguration(
                "max_pages_per_chunk must be positive",
                provider=self.name,
                max_pages_per_chunk=self.max_pages_per_chunk,
            )

    @property
    def family(self) -> str:
        """Normalized provider family used to pick an SDK."""
        key = self.name.strip().lower()
        if key in OPENAI_NAMES:
            return "openai"
        if key in GEMINI_NAMES:
            return "gemini"
        return key

    @classmethod
    def from_row(cls, row: AIProvider) -> AIProviderConfig:
        return cls(
            name=row.name,
            model=row.model,
            api_key=row.api_key or None,
            is_active=row.is_active,
            priority=row.priority,
            max_pages_per_chunk=row.max_pages_per_chunk,
            supports_direct_pdf=row.supports_direct_pdf,
            id=row.id,
        )

    def resolve_api_key(self) -> str:
        """Credential from the configuration or the provider's environment variable.

        Raises:
            InvalidConfiguration: If no credential is available
        """
        if self.api_key:
            return self.api_key
        for var in CREDENTIAL_ENV.get(self.family, ()):
            value = os.environ.get(var)
            if value:
                return value
        raise InvalidConfiguration(
            "No API key configured",
            provider=self.name,
            env=", ".join(CREDENTIAL_ENV.get(self.family, ())) or None,
        )


class ProviderRegistry:
    """Stored provider configurations and the selection rule.

    At most one provider is active. ``select`` returns the active provider
    if there is one, otherwise the one with the lowest priority number.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def add(self, config: AIProviderConfig) -> AIProviderConfig:
        """Store a provider configuration.

        Adding an active provider deactivates every other provider.
        """
        with self.database.session() as session:
            if config.is_active:
                for other in session.scalars(select(AIProvider).where(AIProvider.is_active)):
                    other.is_active = False
            row = AIProvider(
                name=config.name.strip(),
                model=config.model.strip(),
                api_key=config.api_key,
                is_active=config.is_active,
                priority=config.priority,
                max_pages_per_chunk=config.max_pages_per_chunk,
                supports_direct_pdf=config.supports_direct_pdf,
            )
            session.add(row)
            session.commit()
            logger.info(f"Added provider {row.name} ({row.model}) with id {row.id}")
            return AIProviderConfig.from_row(row)

    def list_providers(self) -> list[AIProviderConfig]:
        """All providers in selection order."""
        stmt = select(AIProvider).order_by(
            AIProvider.is_active.desc(), AIProvider.priority, AIProvider.id
        )
        with self.database.session() as session:
            return [AIProviderConfig.from_row(row) for row in session.scalars(stmt)]

    def activate(self, provider_id: int) -> AIProviderConfig:
        """Make one provider active and every other provider inactive.

        Raises:
            InvalidConfiguration: If no provider has this id
        """
        with self.database.session() as session:
            row = session.get(AIProvider, provider_id)
            if row is None:
                raise InvalidConfiguration("Provider not found", provider_id=provider_id)
            for other in session.scalars(select(AIProvider)):
                other.is_active = other.id == provider_id
            session.commit()
            logger.info(f"Activated provider {row.name} ({row.model})")
            return AIProviderConfig.from_row(row)

    def remove(self, provider_id: int) -> bool:
        with self.database.session() as session:
            row = session.get(AIProvider, provider_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def select(self) -> AIProviderConfig:
        """Pick the provider to use for a run.

        Raises:
            InvalidConfiguration: If no provider is configured or several are active
        """
        providers = self.list_providers()
        if not providers:
            raise InvalidConfiguration("No AI provider configured")
        active = [p for p in providers if p.is_active]
        if len(active) > 1:
            raise InvalidConfiguration(
                "More than one AI provider is active",
                active=", ".join(p.name for p in active),
            )
        chosen = active[0] if active else providers[0]
        logger.debug(f"Selected provider {chosen.name} ({chosen.model})")
        return chosen


class OpenAIProvider:
    """Provider capability backed by the OpenAI Responses API.

    PDFs are sent as ``input_file`` parts and page images as
    ``input_image`` parts, both as base64 data URLs. The response is
    requested in JSON mode.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        timeout: float = 120.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        if client is not None:
            self.__dict__["client"] = client

    @cached_property
    def client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)

    async def invoke(
        self,
        prompt: str,
        pdf_bytes: bytes | None = None,
        images: Sequence[bytes] = (),
    ) -> str:
        content: list[dict[str, str]] = [{"type": "input_text", "text": prompt}]
        if pdf_bytes is not None:
            encoded = base64.b64encode(pdf_bytes).decode("ascii")
            content.append(
                {
                    "type": "input_file",
                    "filename": "document.pdf",
                    "file_data": f"data:application/pdf;base64,{encoded}",
                }
            )
        for image in images:
            encoded = base64.b64encode(image).decode("ascii")
            content.append({"type": "input_image", "image_url": f"data:image/png;base64,{encoded}"})

        try:
            response = await self.client.responses.create(
                model=self.model,
                input=[{"role": "user", "content": content}],  # type: ignore[list-item]
                text={"format": {"type": "json_object"}},
            )
        except (APIConnectionError, RateLimitError, InternalServerError) as e:
            # APITimeoutError is an APIConnectionError
            raise RetryableError(
                f"OpenAI call failed: {e.__class__.__name__}",
                provider="openai",
                model=self.model,
                error=str(e),
            ) from e
        except OpenAIError as e:
            raise ExtractionTransportFailure(
                "OpenAI rejected the request",
                provider="openai",
                model=self.model,
                error=str(e),
            ) from e

        if getattr(response, "usage", None):
            logger.debug(
                f"OpenAI usage - input: {response.usage.input_tokens} tokens, "
                f"output: {response.usage.output_tokens} tokens"
            )
        return response.output_text or ""


class GeminiProvider:
    """Provider capability backed by the google-genai SDK.

    PDF bytes and page images are sent as inline parts; the response MIME
    type is set to JSON.
    """

    def __init__(
        self,
        model: str,
        api_key: str,
        timeout: float = 120.0,
        client: genai.Client | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        if client is not None:
            self.__dict__["client"] = client

    @cached_property
    def client(self) -> genai.Client:
        return genai.Client(api_key=self.api_key)

    async def invoke(
        self,
        prompt: str,
        pdf_bytes: bytes | None = None,
        images: Sequence[bytes] = (),
    ) -> str:
        parts: list[genai_types.Part] = [genai_types.Part.from_text(text=prompt)]
        if pdf_bytes is not None:
            parts.append(genai_types.Part.from_bytes(data=pdf_bytes, mime_type="application/pdf"))
        for image in images:
            parts.append(genai_types.Part.from_bytes(data=image, mime_type="image/png"))

        config = genai_types.GenerateContentConfig(response_mime_type="application/json")
        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model,
                    contents=parts,
                    config=config,
                ),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise RetryableError(
                "Gemini call timed out",
                provider="gemini",
                model=self.model,
                timeout=self.timeout,
            ) from e
        except httpx.TransportError as e:
            # google-genai lets connection failures through as raw httpx errors
            raise RetryableError(
                f"Gemini connection failed: {e.__class__.__name__}",
                provider="gemini",
                model=self.model,
                error=str(e),
            ) from e
        except genai_errors.ServerError as e:
            raise RetryableError(
                "Gemini server error",
                provider="gemini",
                model=self.model,
                error=str(e),
            ) from e
        except genai_errors.APIError as e:
            if e.code == 429:
                raise RetryableError(
                    "Gemini rate limit",
                    provider="gemini",
                    model=self.model,
                    error=str(e),
                ) from e
            raise ExtractionTransportFailure(
                "Gemini rejected the request",
                provider="gemini",
                model=self.model,
                error=str(e),
            ) from e

        return response.text or ""


def create_capability(config: AIProviderConfig, timeout: float = 120.0) -> OpenAIProvider | GeminiProvider:
    """Build the capability for a provider configuration.

    Raises:
        InvalidConfiguration: If the provider family is unknown or has no credential
    """
    if config.family == "openai":
        return OpenAIProvider(config.model, config.resolve_api_key(), timeout=timeout)
    if config.family == "gemini":
        return GeminiProvider(config.model, config.resolve_api_key(), timeout=timeout)
    raise InvalidConfiguration(
        f"Unknown AI provider: {config.name}",
        provider=config.name,
        supported="openai, gemini",
    )
