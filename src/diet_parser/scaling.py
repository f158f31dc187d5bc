"""Per-person portions of planned recipes.

Everyone on a plan eats the same dishes in different amounts. A person's
scaling factor is their calorie target divided by the mean target of the
plan's persons, so a household with equal targets eats the base recipe.

Ingredient quantities are rewritten by the provider; nutrition values are the
base recipe's values multiplied by the factor. Desserts are shared equally and
are never scaled.

Example:
    >>> service = RecipeScalingService(database, capability=provider)
    >>> scaled = await service.scale_entry(entry.id)
    >>> [(s.person.name, s.scaled_calories) for s in scaled]
    [('Anna', 320), ('Tomek', 480)]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from .db import Database
from .exceptions import ExtractionParseFailure, MealPlanError, RetryableError
from .extraction import parse_json_response
from .models import MealPlan, MealPlanDay, MealPlanEntry, MealPlanPerson, Recipe, ScaledRecipe
from .prompts import build_scaling_prompt
from .protocols import ProviderCapability
from .retry import RetryConfig, with_retry
from .schema import MealType, ScalingResponse

logger = logging.getLogger(__name__)


def scaling_factors(persons: Sequence[MealPlanPerson]) -> dict[int, float]:
    """Each person's target relative to the mean target, keyed by person id.

    Example:
        >>> scaling_factors([anna, tomek])  # 1600 and 2400 kcal
        {1: 0.8, 2: 1.2}
    """
    mean = sum(p.target_calories for p in persons) / len(persons)
    return {p.id: p.target_calories / mean for p in persons}


class RecipeScalingService:
    """Scale plan entries to the persons of their plan.

    Attributes:
        database: Database holding plans and recipes
        capability: Provider rewriting ingredient quantities, or None to keep
            the base ingredient lines
        retry: Retry policy for provider calls
        delay: Pause in seconds between successive provider calls
    """

    def __init__(
        self,
        database: Database,
        capability: ProviderCapability | None = None,
        retry: RetryConfig | None = None,
        delay: float = 0.0,
    ) -> None:
        self.database = database
        self.capability = capability
        self.retry = retry or RetryConfig()
        self.delay = delay

    async def scale_entry(self, entry_id: int) -> list[ScaledRecipe]:
        """Scale one entry's recipe for every person of its plan.

        Earlier scaled versions of the entry are replaced. When the provider
        fails or returns no ingredients for a person, that person gets the
        base ingredient lines with scaled nutrition.

        Returns:
            The stored scaled recipes in person order

        Raises:
            MealPlanError: If the entry does not exist or its plan has no persons
            ExtractionTransportFailure: If the provider rejects the request
        """
        with self.database.session() as session:
            entry = session.get(MealPlanEntry, entry_id)
            if entry is None:
                raise MealPlanError("Meal plan entry not found", entry_id=entry_id)
            recipe = entry.recipe
            meal_type = entry.meal_type
            plan = session.scalar(
                select(MealPlan)
                .join(MealPlanDay)
                .where(MealPlanDay.id == entry.day_id)
                .options(selectinload(MealPlan.persons))
            )
            persons = list(plan.persons) if plan is not None else []
        if not persons:
            raise MealPlanError("Meal plan has no persons", entry_id=entry_id)

        shared = meal_type == MealType.Dessert
        factors = scaling_factors(persons)
        logger.info(
            f"Scaling {recipe.name!r} for {len(persons)} persons"
            + (" (dessert, equal portions)" if shared else "")
        )

        scaled: list[ScaledRecipe] = []
        calls = 0
        for person in persons:
            factor = 1.0 if shared else factors[person.id]
            ingredients = recipe.ingredient_lines
            if not shared and self.capability is not None:
                if calls and self.delay > 0:
                    await asyncio.sleep(self.delay)
                calls += 1
                ingredients = await self._scale_ingredients(self.capability, recipe, factor)
            scaled.append(
                ScaledRecipe(
                    entry_id=entry_id,
                    person_id=person.id,
                    base_recipe_id=recipe.id,
                    scaling_factor=factor,
                    scaled_ingredients=ingredients,
                    scaled_calories=round(recipe.calories * factor),
                    scaled_protein=round(recipe.protein * factor, 1),
                    scaled_carbohydrates=round(recipe.carbohydrates * factor, 1),
                    scaled_fat=round(recipe.fat * factor, 1),
                )
            )

        with self.database.session() as session:
            session.execute(delete(ScaledRecipe).where(ScaledRecipe.entry_id == entry_id))
            session.add_all(scaled)
            session.commit()
        return self.get_scaled_recipes(entry_id)

    async def _scale_ingredients(
        self, capability: ProviderCapability, recipe: Recipe, factor: float
    ) -> list[str]:
        prompt = build_scaling_prompt(recipe, factor)

        @with_retry(**self.retry.to_kwargs(), retryable=(RetryableError,))
        async def call() -> str:
            return await capability.invoke(prompt)

        try:
            response = parse_json_response(await call(), ScalingResponse, recipe=recipe.name)
        except (RetryableError, ExtractionParseFailure) as e:
            logger.warning(f"Keeping base ingredients of {recipe.name!r}: {e}")
            return recipe.ingredient_lines
        if not response.scaled_ingredients:
            logger.warning(f"Provider returned no scaled ingredients for {recipe.name!r}")
            return recipe.ingredient_lines
        return response.scaled_ingredients

    def get_scaled_recipes(self, entry_id: int) -> list[ScaledRecipe]:
        """Stored scaled versions of an entry, in person order."""
        stmt = (
            select(ScaledRecipe)
            .join(MealPlanPerson)
            .where(ScaledRecipe.entry_id == entry_id)
            .order_by(MealPlanPerson.sort_order, MealPlanPerson.id)
        )
        with self.database.session() as session:
            return list(session.scalars(stmt).unique())
