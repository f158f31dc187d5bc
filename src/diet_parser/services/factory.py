"""Service factory for centralized dependency injection.

This module provides the ServiceFactory class which acts as a dependency
injection container, creating and managing service instances with proper
dependency sharing.

Benefits:
- Single database engine shared by every service
- Provider selection in one place
- Easy testing via mock injection
- Clear dependency graph

Example:
    >>> from diet_parser.config import ExtractionConfig
    >>> config = ExtractionConfig.load()
    >>> factory = ServiceFactory(config)
    >>> processor = factory.create_processor()
    >>> summary = await processor.run(factory.discover_sources())
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING

from ..db import Database

if TYPE_CHECKING:
    from ..config import ExtractionConfig
    from ..extraction import ExtractionAdapter
    from ..ledger import ProcessingLedger
    from ..meal_plans import MealPlanService
    from ..pdf import PdfReader
    from ..pipeline import ProgressCallback, RecipeProcessor
    from ..protocols import ProviderCapability
    from ..providers import AIProviderConfig, ProviderRegistry
    from ..repository import SqlRecipeRepository
    from ..scaling import RecipeScalingService
    from ..shopping import ShoppingListService


@dataclass
class ServiceFactory:
    """Factory for creating service instances with shared dependencies.

    Attributes:
        config: Extraction configuration for all services

    Example:
        >>> factory = ServiceFactory(ExtractionConfig(database_url="sqlite://"))
        >>> factory.providers.add(AIProviderConfig(name="gemini", model="gemini-2.5-flash"))
        >>> processor = factory.create_processor()

    Note:
        The database is lazily created and cached, and its tables are created
        on first access.
    """

    config: ExtractionConfig

    @cached_property
    def database(self) -> Database:
        """Get the shared database, creating missing tables."""
        database = Database(self.config.database_url)
        database.create_all()
        return database

    @cached_property
    def providers(self) -> ProviderRegistry:
        from ..providers import ProviderRegistry

        return ProviderRegistry(self.database)

    def create_repository(self) -> SqlRecipeRepository:
        from ..repository import SqlRecipeRepository

        return SqlRecipeRepository(self.database)

    def create_ledger(self) -> ProcessingLedger:
        from ..ledger import ProcessingLedger

        return ProcessingLedger(self.database)

    def create_pdf_reader(self) -> PdfReader:
        from ..pdf import PdfReader

        return PdfReader(dpi=self.config.render_dpi)

    def create_capability(self, provider: AIProviderConfig | None = None) -> ProviderCapability:
        """Create the capability for a provider (the selected one by default).

        Raises:
            InvalidConfiguration: If no usable provider is configured
        """
        from ..providers import create_capability

        return create_capability(provider or self.providers.select())

    def create_adapter(self) -> ExtractionAdapter:
        """Create an extraction adapter with the configured retry policy.

        Example:
            >>> adapter = factory.create_adapter()
            >>> record = await adapter.extract(chunk, factory.providers.select())
        """
        from ..extraction import ExtractionAdapter
        from ..retry import RetryConfig

        debug_dir = None
        if self.config.debug_mode:
            debug_dir = self.config.debug_dir
            debug_dir.mkdir(parents=True, exist_ok=True)

        return ExtractionAdapter(
            retry=RetryConfig(
                max_attempts=self.config.retry_attempts,
                delay=self.config.retry_delay,
            ),
            debug_dir=debug_dir,
        )

    def create_processor(
        self,
        provider: AIProviderConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> RecipeProcessor:
        """Create a batch processor wired to the shared services.

        Args:
            provider: Provider to use; the registry's selection by default
            progress_callback: Called with (stage, current, total)

        Raises:
            InvalidConfiguration: If no provider is configured or several are active
        """
        from ..pipeline import RecipeProcessor

        return RecipeProcessor(
            config=self.config,
            provider=provider or self.providers.select(),
            adapter=self.create_adapter(),
            repository=self.create_repository(),
            ledger=self.create_ledger(),
            reader=self.create_pdf_reader(),
            progress_callback=progress_callback,
        )

    def create_meal_plan_service(self, seed: int | None = None) -> MealPlanService:
        from ..meal_plans import MealPlanService

        return MealPlanService(self.database, rng=random.Random(seed))

    def create_shopping_list_service(self, use_provider: bool = True) -> ShoppingListService:
        """Create a shopping-list service.

        Args:
            use_provider: Aggregate with the selected provider; plain counting otherwise
        """
        from ..retry import RetryConfig
        from ..shopping import ShoppingListService

        return ShoppingListService(
            self.database,
            capability=self.create_capability() if use_provider else None,
            retry=RetryConfig(max_attempts=self.config.retry_attempts, delay=self.config.retry_delay),
        )

    def create_scaling_service(self, use_provider: bool = True) -> RecipeScalingService:
        """Create a portion-scaling service.

        Args:
            use_provider: Rewrite quantities with the selected provider; keep the
                base ingredient lines otherwise
        """
        from ..retry import RetryConfig
        from ..scaling import RecipeScalingService

        return RecipeScalingService(
            self.database,
            capability=self.create_capability() if use_provider else None,
            retry=RetryConfig(max_attempts=self.config.retry_attempts, delay=self.config.retry_delay),
            delay=self.config.delay_between_chunks,
        )

    def discover_sources(self, directory: Path | None = None) -> list[Path]:
        """PDF files under ``directory`` or the configured source directory."""
        from ..pdf import discover_pdfs

        return discover_pdfs(directory or self.config.pdf_source_dir)
