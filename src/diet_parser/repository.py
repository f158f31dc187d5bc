"""Recipe repository for persistence operations.

This module provides the repository layer for saving and querying recipes.
Every write runs in its own session and is committed on its own, so a failure
on one recipe never rolls back recipes saved before it.

Example:
    >>> from diet_parser.repository import SqlRecipeRepository
    >>> repository = SqlRecipeRepository(database)
    >>> repository.insert(recipe)
    >>> repository.count(MealType.Breakfast)
    12
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from .db import Database
from .exceptions import PersistenceFailure
from .merge import normalize_name
from .models import Recipe
from .schema import MealType

logger = logging.getLogger(__name__)


class SqlRecipeRepository:
    """Recipe store backed by SQLAlchemy.

    The pipeline only needs ``insert``, ``update``, ``delete``,
    ``list_by_meal_type`` and ``count``; the remaining queries serve meal-plan
    generation and prompt context.

    Attributes:
        database: Database providing sessions

    Example:
        >>> repo = SqlRecipeRepository(Database("sqlite://"))
        >>> saved = repo.insert(Recipe(name="Owsianka", ingredients="płatki", meal_type=MealType.Breakfast))
        >>> repo.get(saved.id).name
        'Owsianka'
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def insert(self, recipe: Recipe) -> Recipe:
        """Insert a recipe and commit.

        Args:
            recipe: Unsaved recipe entity

        Returns:
            The saved recipe with its id assigned

        Raises:
            PersistenceFailure: If the insert fails
        """
        try:
            with self.database.session() as session:
                session.add(recipe)
                session.commit()
        except Exception as e:
            # Driver errors such as OverflowError are not wrapped by SQLAlchemy
            raise PersistenceFailure(
                "Could not insert recipe",
                recipe=recipe.name,
                error=str(e),
            ) from e
        logger.debug(f"Inserted recipe {recipe.name!r} ({recipe.id})")
        return recipe

    def update(self, recipe: Recipe) -> Recipe:
        """Write changes of a detached recipe back to the store.

        Raises:
            PersistenceFailure: If the recipe does not exist or the write fails
        """
        try:
            with self.database.session() as session:
                if session.get(Recipe, recipe.id) is None:
                    raise PersistenceFailure("Recipe not found", recipe_id=recipe.id)
                merged = session.merge(recipe)
                session.commit()
        except (SQLAlchemyError, OverflowError) as e:
            raise PersistenceFailure(
                "Could not update recipe",
                recipe_id=recipe.id,
                error=str(e),
            ) from e
        return merged

    def delete(self, recipe_id: str) -> bool:
        """Delete a recipe by id.

        Meal-plan entries that reference the recipe are removed with it.

        Returns:
            True if a recipe was deleted, False if none had that id

        Raises:
            PersistenceFailure: If the delete fails
        """
        try:
            with self.database.session() as session:
                recipe = session.get(Recipe, recipe_id)
                if recipe is None:
                    return False
                session.delete(recipe)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(
                "Could not delete recipe",
                recipe_id=recipe_id,
                error=str(e),
            ) from e
        logger.info(f"Deleted recipe {recipe_id}")
        return True

    def get(self, recipe_id: str) -> Recipe | None:
        with self.database.session() as session:
            return session.get(Recipe, recipe_id)

    def list_by_meal_type(self, meal_type: MealType | None = None) -> list[Recipe]:
        """List recipes, optionally restricted to one meal type, newest first."""
        stmt = select(Recipe).order_by(Recipe.created_at.desc(), Recipe.name)
        if meal_type is not None:
            stmt = stmt.where(Recipe.meal_type == meal_type)
        with self.database.session() as session:
            return list(session.scalars(stmt))

    def count(self, meal_type: MealType | None = None) -> int:
        stmt = select(func.count()).select_from(Recipe)
        if meal_type is not None:
            stmt = stmt.where(Recipe.meal_type == meal_type)
        with self.database.session() as session:
            return session.scalar(stmt) or 0

    def exists_by_name(self, name: str) -> bool:
        """Check whether a recipe with this name is stored.

        Names match case-insensitively with whitespace collapsed, as in the
        in-document dedup.
        """
        key = normalize_name(name)
        # SQLite's lower() only folds ASCII, so compare in Python for Polish names
        with self.database.session() as session:
            return any(normalize_name(stored) == key for stored in session.scalars(select(Recipe.name)))

    def recent_names(self, limit: int) -> list[str]:
        """Names of the most recently created recipes, newest first."""
        if limit <= 0:
            return []
        stmt = select(Recipe.name).order_by(Recipe.created_at.desc()).limit(limit)
        with self.database.session() as session:
            return list(session.scalars(stmt))

    def random_by_meal_type(
        self,
        meal_type: MealType,
        count: int,
        rng: random.Random | None = None,
        exclude: Sequence[str] = (),
    ) -> list[Recipe]:
        """Pick up to ``count`` distinct random recipes of one meal type.

        Args:
            meal_type: Meal type to draw from
            count: Number of recipes wanted
            rng: Random source; a fresh ``random.Random`` when omitted
            exclude: Recipe ids that must not be picked

        Returns:
            Fewer than ``count`` recipes when the store does not have enough
        """
        excluded = set(exclude)
        candidates = [r for r in self.list_by_meal_type(meal_type) if r.id not in excluded]
        # Sort first so a seeded rng gives the same picks regardless of row order
        candidates.sort(key=lambda r: r.id)
        rng = rng or random.Random()
        return rng.sample(candidates, min(count, len(candidates)))

    def by_calorie_range(
        self,
        meal_type: MealType,
        min_calories: int,
        max_calories: int,
    ) -> list[Recipe]:
        """Recipes of a meal type with calories in ``[min_calories, max_calories]``."""
        stmt = (
            select(Recipe)
            .where(Recipe.meal_type == meal_type)
            .where(Recipe.calories >= min_calories)
            .where(Recipe.calories <= max_calories)
            .order_by(Recipe.calories, Recipe.id)
        )
        with self.database.session() as session:
            return list(session.scalars(stmt))
