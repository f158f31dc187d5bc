"""Schemas for provider output and embedded documents.

This module defines the pydantic models that sit at the deserialization
boundary between an AI provider and the rest of the pipeline:

- ``ExtractedRecipe``/``ExtractionResponse``: the ``{"recipes": [...]}`` object
  a provider must return for a chunk of a diet plan
- ``NutritionVariant``: an alternate macro set ("całość", "na porcję", ...)
- ``ShoppingListItem``/``ShoppingListResponse``: aggregated shopping lists
- ``ScalingResponse``: ingredient lines rescaled for one person

Numeric fields use the flexible decoders, so "450", 450.0 and " 450 " all
validate; structural problems (no ``recipes`` array, a recipe that is not an
object) still fail validation.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from .decoder import FlexibleFloat, FlexibleInt, FlexibleNullableInt


class MealType(str, Enum):
    """Meal categories a recipe can be filed under."""

    Breakfast = "Breakfast"
    Lunch = "Lunch"
    Dinner = "Dinner"
    Dessert = "Dessert"
    Drink = "Drink"


def _text(value: Any) -> Any:
    """Coerce null to "" and a list of lines to one newline-joined string."""
    if value is None:
        return ""
    if isinstance(value, list):
        return "\n".join(str(item).strip() for item in value if str(item).strip())
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return value


def _lines(value: Any) -> Any:
    """Accept an ingredient list given as one multi-line string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    return value


Text = Annotated[str, BeforeValidator(_text)]
Lines = Annotated[list[str], BeforeValidator(_lines)]


class NutritionVariant(BaseModel):
    """One labelled row of a recipe's nutrition table."""

    label: Text = Field(
        "",
        description="Row label from the nutrition table, e.g. 'całość', 'na porcję'",
    )
    calories: FlexibleInt = Field(0, description="Calories (kcal) as an integer")
    protein: FlexibleFloat = Field(0.0, description="Protein in grams")
    carbohydrates: FlexibleFloat = Field(0.0, description="Carbohydrates in grams")
    fat: FlexibleFloat = Field(0.0, description="Fat in grams")
    notes: str | None = Field(None, description="Footnote attached to the row, if any")

    model_config = ConfigDict(extra="ignore")


class ExtractedRecipe(BaseModel):
    """A candidate recipe as returned by the provider; untrusted."""

    name: Text = Field("", description="Recipe name exactly as written")
    description: Text = Field("", description="Short description (1-2 sentences)")
    ingredients: Lines = Field(
        default_factory=list,
        description="Ingredients with quantities, one per element",
    )
    instructions: Text = Field("", description="Steps, one per line")
    calories: FlexibleInt = Field(0, description="Calories per serving")
    protein: FlexibleFloat = Field(0.0, description="Protein per serving in grams")
    carbohydrates: FlexibleFloat = Field(0.0, description="Carbohydrates per serving in grams")
    fat: FlexibleFloat = Field(0.0, description="Fat per serving in grams")
    meal_type: Text = Field(
        "",
        alias="mealType",
        description="One of: Sniadanie, Obiad, Kolacja, Deser, Napoj",
    )
    servings: FlexibleNullableInt = Field(None, description="Number of servings, if stated")
    nutrition_variants: list[NutritionVariant] | None = Field(
        None,
        alias="nutritionVariants",
        description="Every row of the nutrition table",
    )

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ExtractionResponse(BaseModel):
    """The JSON object a provider returns for one chunk."""

    recipes: list[ExtractedRecipe] = Field(
        ...,
        description="All complete recipes found in the chunk, in order of appearance",
    )

    model_config = ConfigDict(extra="ignore")


class ShoppingListItem(BaseModel):
    """One aggregated line of a shopping list."""

    name: Text = Field(..., description="Ingredient name")
    quantity: Text = Field("", description="Quantity with unit, e.g. '500g', '2 szt'")
    category: Text = Field("inne", description="Shop section, e.g. 'warzywa', 'nabiał'")

    model_config = ConfigDict(extra="ignore")


class ShoppingListResponse(BaseModel):
    """The JSON object a provider returns for a shopping-list request."""

    items: list[ShoppingListItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class ScalingResponse(BaseModel):
    """The JSON object a provider returns for a scaling request."""

    scaled_ingredients: Lines = Field(
        default_factory=list,
        alias="scaledIngredients",
        description="Every ingredient line with its quantity scaled",
    )

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
