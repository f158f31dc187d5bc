"""
Diet Parser - Extract recipes from PDF diet plans with an LLM.

This package splits diet-plan PDFs into page windows, asks an AI provider for
the recipes on each window, merges and stores them, and builds meal plans and
shopping lists, scaled per person, from the stored collection.
"""

__version__ = "0.1.0"

from .config import ExtractionConfig
from .exceptions import DietParserError, InvalidConfiguration
from .models import Recipe
from .pipeline import RecipeProcessor, RunSummary
from .schema import MealType

__all__ = [
    "DietParserError",
    "ExtractionConfig",
    "InvalidConfiguration",
    "MealType",
    "Recipe",
    "RecipeProcessor",
    "RunSummary",
]
