"""Merge and deduplicate candidate recipes into Recipe entities.

Candidates from all chunks of a document are flattened in order and keyed by
their normalized name. When two candidates share a key, the later one only
fills fields that are still empty on the earlier one, so a populated field is
never replaced. Merged candidates become ``Recipe`` entities ready for
persistence.

Example:
    >>> recipes = merge_records(records, default_meal_type=MealType.Lunch)
    >>> [r.name for r in recipes]
    ['Owsianka', 'Zupa krem z dyni']
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from .extraction import ExtractionRecord
from .models import Recipe
from .schema import ExtractedRecipe, MealType

logger = logging.getLogger(__name__)

MEAL_TYPE_LABELS: dict[str, MealType] = {
    "Sniadanie": MealType.Breakfast,
    "Śniadanie": MealType.Breakfast,
    "Obiad": MealType.Lunch,
    "Kolacja": MealType.Dinner,
    "Deser": MealType.Dessert,
    "Napoj": MealType.Drink,
    "Napój": MealType.Drink,
    **{m.value: m for m in MealType},
}


def normalize_name(name: str) -> str:
    """Dedup key: whitespace collapsed, trimmed and casefolded.

    Example:
        >>> normalize_name("  Owsianka   z Jabłkiem ")
        'owsianka z jabłkiem'
    """
    return " ".join(name.split()).casefold()


def resolve_meal_type(label: str, default: MealType = MealType.Lunch) -> MealType:
    """Map a meal-type label to the enum by exact match.

    Args:
        label: Label as returned by the provider, e.g. "Kolacja"
        default: Used when the label is not recognized

    Example:
        >>> resolve_meal_type("Kolacja")
        <MealType.Dinner: 'Dinner'>
        >>> resolve_meal_type("Przekąska", MealType.Lunch)
        <MealType.Lunch: 'Lunch'>
    """
    meal_type = MEAL_TYPE_LABELS.get(label.strip())
    if meal_type is None:
        if label.strip():
            logger.debug(f"Unknown meal type label {label!r}, using {default.value}")
        return default
    return meal_type


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value
    if isinstance(value, int | float) and not isinstance(value, bool):
        return value == 0
    return False


def merge_candidates(earlier: ExtractedRecipe, later: ExtractedRecipe) -> ExtractedRecipe:
    """Fill fields that are empty on ``earlier`` from ``later``.

    Example:
        >>> a = ExtractedRecipe(name="Owsianka", calories=350)
        >>> b = ExtractedRecipe(name="owsianka", ingredients=["płatki owsiane"], calories=400)
        >>> merged = merge_candidates(a, b)
        >>> merged.calories, merged.ingredients
        (350, ['płatki owsiane'])
    """
    updates = {
        field: getattr(later, field)
        for field in ExtractedRecipe.model_fields
        if _is_empty(getattr(earlier, field)) and not _is_empty(getattr(later, field))
    }
    return earlier.model_copy(update=updates) if updates else earlier


def dedupe_candidates(candidates: Iterable[ExtractedRecipe]) -> list[ExtractedRecipe]:
    """Collapse candidates with the same normalized name, keeping first-seen order.

    Candidates with a blank name are dropped.
    """
    merged: dict[str, ExtractedRecipe] = {}
    for candidate in candidates:
        key = normalize_name(candidate.name)
        if not key:
            logger.info("Dropping candidate without a name")
            continue
        if key in merged:
            logger.debug(f"Merging duplicate candidate {candidate.name!r}")
            merged[key] = merge_candidates(merged[key], candidate)
        else:
            merged[key] = candidate
    return list(merged.values())


def to_recipe(
    candidate: ExtractedRecipe,
    default_meal_type: MealType = MealType.Lunch,
    source_file: str | None = None,
) -> Recipe | None:
    """Turn a merged candidate into a Recipe entity.

    Returns:
        The entity, or None when the candidate has a blank name or no
        ingredients. Negative nutrition values are clamped to zero.
    """
    name = " ".join(candidate.name.split())
    ingredients = "\n".join(line.strip() for line in candidate.ingredients if line.strip())
    if not name or not ingredients:
        logger.info(f"Dropping incomplete recipe {candidate.name!r}: missing name or ingredients")
        return None

    return Recipe(
        name=name,
        description=candidate.description.strip(),
        ingredients=ingredients,
        instructions=candidate.instructions.strip(),
        calories=max(0, candidate.calories),
        protein=max(0.0, candidate.protein),
        carbohydrates=max(0.0, candidate.carbohydrates),
        fat=max(0.0, candidate.fat),
        servings=candidate.servings if candidate.servings and candidate.servings > 0 else None,
        meal_type=resolve_meal_type(candidate.meal_type, default_meal_type),
        nutrition_variants=candidate.nutrition_variants or None,
        source_file=source_file,
    )


def merge_records(
    records: Iterable[ExtractionRecord],
    default_meal_type: MealType = MealType.Lunch,
    source_file: str | None = None,
) -> list[Recipe]:
    """Merge the records of one document into deduplicated Recipe entities.

    Args:
        records: Extraction records in chunk order; failed records contribute nothing
        default_meal_type: Meal type for unrecognized labels
        source_file: Document name stored on each recipe

    Returns:
        Recipes in first-seen order
    """
    candidates = [recipe for record in records for recipe in record.recipes]
    unique = dedupe_candidates(candidates)
    recipes = [
        recipe
        for recipe in (to_recipe(c, default_meal_type, source_file) for c in unique)
        if recipe is not None
    ]
    logger.info(
        f"Merged {len(candidates)} candidates into {len(recipes)} recipes"
        + (f" from {source_file}" if source_file else "")
    )
    return recipes
