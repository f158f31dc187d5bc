"""SQLAlchemy ORM models for diet_parser.

Tables:
- recipes: extracted recipes with macros as plain numeric columns
- processed_files: processing ledger, one row per completed source PDF
- ai_providers: configured AI providers and their chunking limits
- meal_plans / meal_plan_days / meal_plan_entries: plans owning days owning entries
- meal_plan_persons: people sharing a plan, each with a daily calorie target
- meal_plan_recipes: an entry's recipe scaled to one person's target
- shopping_lists: one derived shopping list per plan, items embedded as JSON
"""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import UTC, date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .orm_types import EmbeddedDocument
from .schema import MealType, NutritionVariant, ShoppingListItem


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


MealTypeColumn = Enum(MealType, native_enum=False, length=20, validate_strings=True)


class Recipe(Base):
    """A recipe extracted from a diet plan."""

    __tablename__ = "recipes"
    __table_args__ = (
        Index("ix_recipes_meal_type", "meal_type"),
        Index("ix_recipes_created_at", "created_at"),
        CheckConstraint("calories >= 0", name="ck_recipes_calories"),
        CheckConstraint("protein >= 0 AND carbohydrates >= 0 AND fat >= 0", name="ck_recipes_macros"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ingredients: Mapped[str] = mapped_column(Text, nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False, default="")

    calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    protein: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    carbohydrates: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fat: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    servings: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    meal_type: Mapped[MealType] = mapped_column(MealTypeColumn, nullable=False)
    alternate_meal_type: Mapped[Optional[MealType]] = mapped_column(MealTypeColumn, nullable=True)

    # Whole-object access only, so no separate table
    nutrition_variants: Mapped[Optional[list[NutritionVariant]]] = mapped_column(
        EmbeddedDocument(list[NutritionVariant]), nullable=True
    )

    image_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    source_file: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def ingredient_lines(self) -> list[str]:
        return [line for line in self.ingredients.splitlines() if line.strip()]

    def __repr__(self) -> str:
        return f"Recipe(id={self.id!r}, name={self.name!r}, meal_type={self.meal_type!r})"


class ProcessedFile(Base):
    """Ledger row marking a source PDF as fully processed."""

    __tablename__ = "processed_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    recipes_extracted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AIProvider(Base):
    """A configured AI provider.

    API keys may be left empty; the provider then reads the key from the
    environment (OPENAI_API_KEY, GEMINI_API_KEY).
    """

    __tablename__ = "ai_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    api_key: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    max_pages_per_chunk: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    supports_direct_pdf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class MealPlan(Base):
    """A named plan spanning consecutive days."""

    __tablename__ = "meal_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=utcnow
    )

    days: Mapped[list[MealPlanDay]] = relationship(
        back_populates="meal_plan",
        cascade="all, delete-orphan",
        order_by="MealPlanDay.date",
    )
    persons: Mapped[list[MealPlanPerson]] = relationship(
        back_populates="meal_plan",
        cascade="all, delete-orphan",
        order_by="MealPlanPerson.sort_order",
    )
    shopping_list: Mapped[Optional[ShoppingList]] = relationship(
        back_populates="meal_plan",
        cascade="all, delete-orphan",
        uselist=False,
    )


class MealPlanDay(Base):
    """One day of a plan. ``day_of_week`` is 0 for Monday through 6 for Sunday."""

    __tablename__ = "meal_plan_days"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meal_plan_id: Mapped[int] = mapped_column(
        ForeignKey("meal_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    meal_plan: Mapped[MealPlan] = relationship(back_populates="days")
    entries: Mapped[list[MealPlanEntry]] = relationship(
        back_populates="day",
        cascade="all, delete-orphan",
        order_by="MealPlanEntry.order",
    )


class MealPlanEntry(Base):
    """A recipe placed in a meal-type slot of a day."""

    __tablename__ = "meal_plan_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    day_id: Mapped[int] = mapped_column(
        ForeignKey("meal_plan_days.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipe_id: Mapped[str] = mapped_column(
        ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    meal_type: Mapped[MealType] = mapped_column(MealTypeColumn, nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    day: Mapped[MealPlanDay] = relationship(back_populates="entries")
    recipe: Mapped[Recipe] = relationship(lazy="joined")
    scaled_recipes: Mapped[list[ScaledRecipe]] = relationship(
        back_populates="entry",
        cascade="all, delete",
    )


class MealPlanPerson(Base):
    """Someone eating from a plan, with their own daily calorie target."""

    __tablename__ = "meal_plan_persons"
    __table_args__ = (
        CheckConstraint(
            "target_calories BETWEEN 1000 AND 5000", name="ck_meal_plan_persons_target"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meal_plan_id: Mapped[int] = mapped_column(
        ForeignKey("meal_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    target_calories: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    meal_plan: Mapped[MealPlan] = relationship(back_populates="persons")
    scaled_recipes: Mapped[list[ScaledRecipe]] = relationship(
        back_populates="person",
        cascade="all, delete",
    )


class ScaledRecipe(Base):
    """A plan entry's recipe scaled to one person.

    ``scaling_factor`` is the person's target divided by the mean target of
    everyone on the plan; the nutrition columns are the base recipe's values
    multiplied by it.
    """

    __tablename__ = "meal_plan_recipes"
    __table_args__ = (
        UniqueConstraint("entry_id", "person_id", name="uq_meal_plan_recipes_entry_person"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("meal_plan_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    person_id: Mapped[int] = mapped_column(
        ForeignKey("meal_plan_persons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    base_recipe_id: Mapped[str] = mapped_column(
        ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    scaling_factor: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    scaled_ingredients: Mapped[list[str]] = mapped_column(
        EmbeddedDocument(list[str]), nullable=False
    )
    scaled_calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scaled_protein: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    scaled_carbohydrates: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    scaled_fat: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    entry: Mapped[MealPlanEntry] = relationship(back_populates="scaled_recipes")
    person: Mapped[MealPlanPerson] = relationship(back_populates="scaled_recipes", lazy="joined")


class ShoppingList(Base):
    """Shopping list derived from a plan's entries."""

    __tablename__ = "shopping_lists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    meal_plan_id: Mapped[int] = mapped_column(
        ForeignKey("meal_plans.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    items: Mapped[list[ShoppingListItem]] = mapped_column(
        EmbeddedDocument(list[ShoppingListItem]), nullable=False
    )

    meal_plan: Mapped[MealPlan] = relationship(back_populates="shopping_list")
