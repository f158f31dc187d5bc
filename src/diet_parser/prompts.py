"""Prompt builders for recipe extraction, shopping lists and portion scaling.

Prompts use XML-style tags to separate instructions, context and content.
Recipe text stays in the language of the document (Polish diet plans), so
field values are copied verbatim and only the instructions are in English.
"""

from __future__ import annotations

from collections.abc import Sequence

from .chunker import Chunk
from .models import Recipe

MEAL_TYPE_LABELS_HINT = '"Sniadanie", "Obiad", "Kolacja", "Deser" or "Napoj"'

SHOPPING_CATEGORIES = (
    "warzywa",
    "owoce",
    "mięso i wędliny",
    "ryby",
    "nabiał",
    "pieczywo",
    "makarony i kasze",
    "spożywka",
    "przyprawy",
    "napoje",
    "chemia",
    "inne",
)

_EXTRACTION_INSTRUCTIONS = f"""You extract recipes from pages of a diet-plan document.

<task>
Extract every COMPLETE recipe on the given pages. A complete recipe has a name,
ingredients with quantities, preparation steps and a nutrition table.
Skip recipes that are cut off at the start or end of the pages.
Copy names, ingredients and instructions exactly as written; do not translate.
</task>

<nutrition>
Nutrition tables have several rows, e.g. "całość" (whole dish), "na porcję"
(per serving), "1/2 porcji", or rows marked with footnotes (*, **).
- calories, protein, carbohydrates, fat: use the per-serving row; if there is
  none, use the first row
- nutritionVariants: include EVERY row of the table with its label; put the
  footnote text, if any, in "notes"
- servings: the number from "Liczba porcji: X", or null
</nutrition>

<rules>
- Numbers only, no units: 450 not "450 kcal"
- Decimal point, not comma: 12.5 not "12,5"
- Keep quantities in ingredients; include side dishes and sauces served with the recipe
- One instruction step per line, separated by "\\n"
- mealType is one of {MEAL_TYPE_LABELS_HINT}
</rules>

<output_format>
Return ONLY a JSON object, without markdown fences:
{{
  "recipes": [
    {{
      "name": "Chlebki czosnkowe",
      "description": "Domowe chlebki czosnkowe jako zamiennik pieczywa",
      "ingredients": ["100 g mąki", "60 ml wody", "2 łyżeczki czosnku"],
      "instructions": "1. Mieszamy mąkę z wodą i przyprawami.\\n2. Wałkujemy ciasto.\\n3. Smażymy na patelni.",
      "calories": 92,
      "protein": 3.0,
      "carbohydrates": 19.0,
      "fat": 0.0,
      "mealType": "Sniadanie",
      "servings": 4,
      "nutritionVariants": [
        {{"label": "całość", "calories": 366, "protein": 10.0, "carbohydrates": 76.0, "fat": 2.0, "notes": null}},
        {{"label": "na porcję", "calories": 92, "protein": 3.0, "carbohydrates": 19.0, "fat": 0.0, "notes": "Same chlebki, cztery porcje"}}
      ]
    }}
  ]
}}
If the pages contain no complete recipe, return {{"recipes": []}}.
</output_format>"""


def _name_list(names: Sequence[str]) -> str:
    return "\n".join(f"- {name}" for name in names)


def build_extraction_prompt(
    chunk: Chunk,
    recent_names: Sequence[str] = (),
    already_in_document: Sequence[str] = (),
    include_text: bool = True,
) -> str:
    """Build the extraction prompt for one chunk.

    Args:
        chunk: Page window being extracted
        recent_names: Names of recipes recently stored, to be skipped
        already_in_document: Names already extracted from earlier chunks of
            the same document, to be skipped
        include_text: Append the chunk's page text; set False when the pages
            are sent only as a PDF or images

    Returns:
        Complete prompt text

    Example:
        >>> prompt = build_extraction_prompt(chunk, recent_names=["Owsianka"])
        >>> "<skip_recipes>" in prompt
        True
    """
    if chunk.pdf_bytes is not None:
        scope = "the whole attached PDF document"
    else:
        scope = f"pages {chunk.start_page}-{chunk.end_page} of {chunk.total_pages}"

    sections = [_EXTRACTION_INSTRUCTIONS, f"<scope>\nYou are given {scope}.\n</scope>"]

    skip = list(dict.fromkeys([*already_in_document, *recent_names]))
    if skip:
        sections.append(
            "<skip_recipes>\nThese recipes are already saved. Do NOT extract them again:\n"
            f"{_name_list(skip)}\n</skip_recipes>"
        )

    if include_text and chunk.text.strip():
        sections.append(f"<pages>\n{chunk.text}\n</pages>")

    return "\n\n".join(sections)


def build_shopping_list_prompt(recipes: Sequence[Recipe]) -> str:
    """Build the prompt asking for an aggregated shopping list.

    Args:
        recipes: Recipes of every plan entry; a recipe planned twice appears twice

    Returns:
        Complete prompt text
    """
    blocks = []
    for recipe in recipes:
        servings = f" (porcje: {recipe.servings})" if recipe.servings else ""
        blocks.append(f"## {recipe.name}{servings}\n{recipe.ingredients}")

    categories = ", ".join(f'"{c}"' for c in SHOPPING_CATEGORIES)
    recipes_text = "\n\n".join(blocks)
    return f"""You build a shopping list from the recipes of a weekly meal plan.

<rules>
- Merge only IDENTICAL ingredients ("pierś z kurczaka" and "udko z kurczaka" stay separate)
- Sum quantities with the same unit: g (over 1000 g use kg), ml (over 1000 ml use l), szt, łyżki, łyżeczki
- If unsure whether two ingredients are the same, keep them separate
- Keep ingredient names in Polish
- category is one of: {categories}
</rules>

<output_format>
Return ONLY a JSON object, without markdown fences:
{{"items": [{{"name": "pomidory", "quantity": "500 g", "category": "warzywa"}}]}}
</output_format>

<recipes>
{recipes_text}
</recipes>"""


def build_scaling_prompt(recipe: Recipe, factor: float) -> str:
    """Build the prompt asking for a recipe's ingredients scaled by ``factor``.

    Example:
        >>> "1.25" in build_scaling_prompt(owsianka, 1.25)
        True
    """
    ingredients = "\n".join(f"- {line}" for line in recipe.ingredient_lines)
    return f"""You scale the ingredient quantities of a recipe for one person.

<task>
Multiply every quantity by {factor:.2f}.
</task>

<rules>
- Round grams: over 100 g to the nearest 5 or 10 g, under 100 g to the nearest 1 or 5 g
- Round liquids to the nearest 5 or 10 ml
- Round pieces (szt, jajka, owoce) to the nearest 0.5
- Keep the original units and ingredient names in Polish
- Leave "do smaku" and "opcjonalnie" ingredients unchanged
- Return every ingredient, in the original order
</rules>

<output_format>
Return ONLY a JSON object, without markdown fences:
{{"scaledIngredients": ["125 g płatków owsianych", "1.5 jabłka"]}}
</output_format>

<recipe>
{recipe.name} ({recipe.calories} kcal)
{ingredients}
</recipe>"""
