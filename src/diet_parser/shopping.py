"""Shopping lists derived from meal plans.

A plan's shopping list is never edited directly: it is generated from the
ingredients of every recipe placed in the plan and stored as one embedded
JSON document, replacing any earlier list for the same plan.

With a provider capability the ingredients are aggregated by the model
(summing quantities, grouping by shop section). Without one, identical
ingredient lines are counted and listed under "inne".

Example:
    >>> service = ShoppingListService(database, capability=provider)
    >>> shopping_list = await service.generate(plan.id)
    >>> [item.name for item in shopping_list.items][:3]
    ['pomidory', 'jogurt naturalny', 'płatki owsiane']
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .db import Database
from .exceptions import ExtractionParseFailure, ExtractionTransportFailure, MealPlanError, RetryableError
from .extraction import parse_json_response
from .merge import normalize_name
from .models import MealPlan, MealPlanDay, Recipe, ShoppingList
from .prompts import build_shopping_list_prompt
from .protocols import ProviderCapability
from .retry import RetryConfig, with_retry
from .schema import ShoppingListItem, ShoppingListResponse

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "inne"


def aggregate_ingredients(recipes: list[Recipe]) -> list[ShoppingListItem]:
    """Count identical ingredient lines across recipes, in first-seen order.

    Example:
        >>> items = aggregate_ingredients([owsianka, owsianka])
        >>> items[0].name, items[0].quantity
        ('50 g płatków owsianych', 'x2')
    """
    counts: dict[str, int] = {}
    names: dict[str, str] = {}
    for recipe in recipes:
        for line in recipe.ingredient_lines:
            key = normalize_name(line)
            names.setdefault(key, " ".join(line.split()))
            counts[key] = counts.get(key, 0) + 1
    return [
        ShoppingListItem(
            name=names[key],
            quantity=f"x{count}" if count > 1 else "",
            category=FALLBACK_CATEGORY,
        )
        for key, count in counts.items()
    ]


class ShoppingListService:
    """Generate and fetch shopping lists for meal plans.

    Attributes:
        database: Database holding plans and lists
        capability: Provider used for aggregation, or None for plain counting
        retry: Retry policy for provider calls
    """

    def __init__(
        self,
        database: Database,
        capability: ProviderCapability | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self.database = database
        self.capability = capability
        self.retry = retry or RetryConfig()

    def _plan_recipes(self, plan_id: int) -> list[Recipe]:
        """Recipes of every entry of a plan, in day and entry order."""
        stmt = (
            select(MealPlan)
            .where(MealPlan.id == plan_id)
            .options(selectinload(MealPlan.days).selectinload(MealPlanDay.entries))
        )
        with self.database.session() as session:
            plan = session.scalar(stmt)
            if plan is None:
                raise MealPlanError("Meal plan not found", plan_id=plan_id)
            return [entry.recipe for day in plan.days for entry in day.entries]

    async def generate(self, plan_id: int) -> ShoppingList:
        """Build and store the shopping list of a plan.

        Returns:
            The stored list

        Raises:
            MealPlanError: If the plan does not exist or has no entries
            ExtractionParseFailure: If the provider response cannot be parsed
            ExtractionTransportFailure: If the provider call fails
        """
        recipes = self._plan_recipes(plan_id)
        if not recipes:
            raise MealPlanError("Meal plan has no recipes", plan_id=plan_id)

        logger.info(f"Generating shopping list for plan {plan_id} from {len(recipes)} recipes")
        if self.capability is None:
            items = aggregate_ingredients(recipes)
        else:
            items = await self._aggregate_with_provider(self.capability, plan_id, recipes)

        with self.database.session() as session:
            shopping_list = session.scalar(
                select(ShoppingList).where(ShoppingList.meal_plan_id == plan_id)
            )
            if shopping_list is None:
                shopping_list = ShoppingList(meal_plan_id=plan_id, items=items)
                session.add(shopping_list)
            else:
                shopping_list.items = items
                shopping_list.generated_at = datetime.now(UTC)
            session.commit()
        logger.info(f"Saved shopping list with {len(items)} items for plan {plan_id}")
        return shopping_list

    async def _aggregate_with_provider(
        self, capability: ProviderCapability, plan_id: int, recipes: list[Recipe]
    ) -> list[ShoppingListItem]:
        prompt = build_shopping_list_prompt(recipes)

        @with_retry(**self.retry.to_kwargs(), retryable=(RetryableError,))
        async def call() -> str:
            return await capability.invoke(prompt)

        try:
            text = await call()
        except RetryableError as e:
            raise ExtractionTransportFailure(
                "Shopping list request failed after retries",
                plan_id=plan_id,
                error=str(e),
            ) from e

        response = parse_json_response(text, ShoppingListResponse, plan_id=plan_id)
        if not response.items:
            raise ExtractionParseFailure("Shopping list response has no items", plan_id=plan_id)
        return response.items

    def get(self, plan_id: int) -> ShoppingList | None:
        """The stored shopping list of a plan, if one was generated."""
        with self.database.session() as session:
            return session.scalar(select(ShoppingList).where(ShoppingList.meal_plan_id == plan_id))
