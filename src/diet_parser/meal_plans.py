"""Meal plans built from the recipe collection.

A ``MealPlan`` owns its days, its persons and a shopping list, and each day
owns its entries, so deleting a plan removes everything under it. The
service is created per caller with its own random source; there is no
module-level "current plan".

Example:
    >>> service = MealPlanService(database, rng=random.Random(7))
    >>> plan = service.create_plan("Tydzień 1", date(2026, 1, 5), number_of_days=7)
    >>> result = service.auto_generate(plan.id, [MealType.Breakfast, MealType.Lunch])
    >>> result.added_count
    14
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .db import Database
from .exceptions import MealPlanError
from .merge import MEAL_TYPE_LABELS
from .models import MealPlan, MealPlanDay, MealPlanEntry, MealPlanPerson, Recipe
from .schema import MealType

logger = logging.getLogger(__name__)

MAX_PLAN_DAYS = 31
DEFAULT_CATEGORIES = (MealType.Breakfast, MealType.Lunch, MealType.Dinner)
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

MAX_PERSONS = 5
MIN_PERSON_CALORIES = 1000
MAX_PERSON_CALORIES = 5000

# How many closest-calorie candidates the calorie mode picks from at random
CALORIE_TOP_MATCHES = 3
# How many random recipes to consider when nothing is in the calorie range
CALORIE_FALLBACK_POOL = 20


@dataclass
class AutoGenerateResult:
    """Outcome of filling a plan automatically.

    Attributes:
        added_count: Entries created
        warnings: Shortfalls and days whose calorie total is off target
    """

    added_count: int = 0
    warnings: list[str] = field(default_factory=list)


def parse_category(category: MealType | str) -> MealType | None:
    """Accept a MealType, its name in any case, or a Polish label."""
    if isinstance(category, MealType):
        return category
    text = category.strip()
    for meal_type in MealType:
        if meal_type.value.lower() == text.lower():
            return meal_type
    return MEAL_TYPE_LABELS.get(text)


def _check_person(name: str, target_calories: int) -> str:
    """Validate a person's fields, returning the stripped name."""
    name = name.strip()
    if not name:
        raise MealPlanError("Person name must not be empty")
    if not MIN_PERSON_CALORIES <= target_calories <= MAX_PERSON_CALORIES:
        raise MealPlanError(
            f"Calorie target must be between {MIN_PERSON_CALORIES} and {MAX_PERSON_CALORIES}",
            target_calories=target_calories,
        )
    return name


def _check_unique_name(persons: Sequence[MealPlanPerson], name: str) -> None:
    if any(p.name.casefold() == name.casefold() for p in persons):
        raise MealPlanError("A person with this name already exists in the plan", name=name)


def _day_label(day: MealPlanDay) -> str:
    return f"{DAY_NAMES[day.day_of_week]} ({day.date:%d.%m})"


class MealPlanService:
    """Create, fill and delete meal plans.

    Attributes:
        database: Database holding plans and recipes
        rng: Random source for automatic generation
    """

    def __init__(self, database: Database, rng: random.Random | None = None) -> None:
        self.database = database
        self.rng = rng or random.Random()

    def create_plan(self, name: str, start_date: date, number_of_days: int = 7) -> MealPlan:
        """Create a plan with one day per date starting at ``start_date``.

        Args:
            name: Plan name
            start_date: Date of the first day
            number_of_days: Between 1 and 31

        Returns:
            The stored plan with its days

        Raises:
            MealPlanError: If the name is blank or the day count is out of range
        """
        if not name.strip():
            raise MealPlanError("Plan name must not be empty")
        if not 1 <= number_of_days <= MAX_PLAN_DAYS:
            raise MealPlanError(
                f"A plan must have between 1 and {MAX_PLAN_DAYS} days",
                number_of_days=number_of_days,
            )

        dates = [start_date + timedelta(days=offset) for offset in range(number_of_days)]
        plan = MealPlan(name=name.strip(), start_date=dates[0], end_date=dates[-1])
        plan.days = [MealPlanDay(day_of_week=d.weekday(), date=d) for d in dates]

        with self.database.session() as session:
            session.add(plan)
            session.commit()
            plan_id = plan.id
        logger.info(f"Created meal plan {name!r} with {number_of_days} days")
        return self._require_plan(plan_id)

    def get_plan(self, plan_id: int) -> MealPlan | None:
        """Load a plan with its days, entries, persons and their recipes."""
        stmt = (
            select(MealPlan)
            .where(MealPlan.id == plan_id)
            .options(
                selectinload(MealPlan.days).selectinload(MealPlanDay.entries),
                selectinload(MealPlan.persons),
                selectinload(MealPlan.shopping_list),
            )
        )
        with self.database.session() as session:
            return session.scalar(stmt)

    def list_plans(self) -> list[MealPlan]:
        stmt = select(MealPlan).order_by(MealPlan.start_date.desc(), MealPlan.id.desc())
        with self.database.session() as session:
            return list(session.scalars(stmt))

    def _require_plan(self, plan_id: int) -> MealPlan:
        plan = self.get_plan(plan_id)
        if plan is None:
            raise MealPlanError("Meal plan not found", plan_id=plan_id)
        return plan

    def update_plan(
        self,
        plan_id: int,
        name: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        is_active: bool | None = None,
    ) -> MealPlan:
        """Change a plan's details; arguments left as None are kept.

        The plan's days are not regenerated when the dates change.

        Raises:
            MealPlanError: If the plan does not exist, the name is blank or
                the end date falls before the start date
        """
        if name is not None and not name.strip():
            raise MealPlanError("Plan name must not be empty", plan_id=plan_id)
        with self.database.session() as session:
            plan = session.get(MealPlan, plan_id)
            if plan is None:
                raise MealPlanError("Meal plan not found", plan_id=plan_id)
            new_start = start_date or plan.start_date
            new_end = end_date or plan.end_date
            if new_end < new_start:
                raise MealPlanError(
                    "End date must not be before start date",
                    plan_id=plan_id,
                    start_date=str(new_start),
                    end_date=str(new_end),
                )
            if name is not None:
                plan.name = name.strip()
            plan.start_date, plan.end_date = new_start, new_end
            if is_active is not None:
                plan.is_active = is_active
            session.commit()
        logger.info(f"Updated meal plan {plan_id}")
        return self._require_plan(plan_id)

    def add_entry(
        self,
        day_id: int,
        recipe_id: str,
        meal_type: MealType | None = None,
    ) -> MealPlanEntry:
        """Place a recipe on a day, after the day's existing entries.

        Args:
            day_id: Day to add to
            recipe_id: Recipe to add
            meal_type: Slot; defaults to the recipe's own meal type

        Raises:
            MealPlanError: If the day or recipe does not exist
        """
        with self.database.session() as session:
            day = session.get(MealPlanDay, day_id)
            if day is None:
                raise MealPlanError("Meal plan day not found", day_id=day_id)
            recipe = session.get(Recipe, recipe_id)
            if recipe is None:
                raise MealPlanError("Recipe not found", recipe_id=recipe_id)
            entry = MealPlanEntry(
                recipe=recipe,
                meal_type=meal_type or recipe.meal_type,
                order=len(day.entries),
            )
            day.entries.append(entry)
            session.commit()
        logger.debug(f"Added {recipe.name!r} to day {day_id}")
        return entry

    def remove_entry(self, entry_id: int) -> bool:
        """Remove one entry. Returns False if it did not exist."""
        with self.database.session() as session:
            entry = session.get(MealPlanEntry, entry_id)
            if entry is None:
                return False
            session.delete(entry)
            session.commit()
        return True

    def update_entry_order(self, entry_id: int, new_order: int) -> bool:
        """Move an entry to position ``new_order`` within its day.

        The day's entries are renumbered 0..n-1 afterwards; a position past
        the end moves the entry last. Returns False if the entry does not exist.

        Raises:
            MealPlanError: If ``new_order`` is negative
        """
        if new_order < 0:
            raise MealPlanError("Entry order must not be negative", entry_id=entry_id)
        with self.database.session() as session:
            entry = session.get(MealPlanEntry, entry_id)
            if entry is None:
                return False
            entries = [e for e in entry.day.entries if e.id != entry_id]
            entries.insert(min(new_order, len(entries)), entry)
            for position, item in enumerate(entries):
                item.order = position
            session.commit()
        return True

    def add_person(self, plan_id: int, name: str, target_calories: int) -> MealPlanPerson:
        """Add someone to a plan, after the plan's existing persons.

        Raises:
            MealPlanError: If the plan does not exist, already has
                ``MAX_PERSONS`` persons, or the name or target is invalid
        """
        name = _check_person(name, target_calories)
        with self.database.session() as session:
            plan = session.get(MealPlan, plan_id)
            if plan is None:
                raise MealPlanError("Meal plan not found", plan_id=plan_id)
            if len(plan.persons) >= MAX_PERSONS:
                raise MealPlanError(
                    f"A plan can have at most {MAX_PERSONS} persons", plan_id=plan_id
                )
            _check_unique_name(plan.persons, name)
            person = MealPlanPerson(
                name=name, target_calories=target_calories, sort_order=len(plan.persons)
            )
            plan.persons.append(person)
            session.commit()
        logger.info(f"Added {name!r} ({target_calories} kcal) to plan {plan_id}")
        return person

    def update_person(
        self,
        person_id: int,
        name: str | None = None,
        target_calories: int | None = None,
    ) -> MealPlanPerson:
        """Rename a person or change their calorie target.

        Recipes already scaled for the person keep their old quantities until
        the entry is scaled again.

        Raises:
            MealPlanError: If the person does not exist or a value is invalid
        """
        with self.database.session() as session:
            person = session.get(MealPlanPerson, person_id)
            if person is None:
                raise MealPlanError("Person not found", person_id=person_id)
            new_name = _check_person(
                person.name if name is None else name,
                person.target_calories if target_calories is None else target_calories,
            )
            others = [p for p in person.meal_plan.persons if p.id != person_id]
            _check_unique_name(others, new_name)
            person.name = new_name
            if target_calories is not None:
                person.target_calories = target_calories
            session.commit()
        return person

    def remove_person(self, person_id: int) -> bool:
        """Remove a person and the recipes scaled for them."""
        with self.database.session() as session:
            person = session.get(MealPlanPerson, person_id)
            if person is None:
                return False
            session.delete(person)
            session.commit()
        logger.info(f"Removed person {person_id}")
        return True

    def list_persons(self, plan_id: int) -> list[MealPlanPerson]:
        stmt = (
            select(MealPlanPerson)
            .where(MealPlanPerson.meal_plan_id == plan_id)
            .order_by(MealPlanPerson.sort_order, MealPlanPerson.id)
        )
        with self.database.session() as session:
            return list(session.scalars(stmt))

    def delete_plan(self, plan_id: int) -> bool:
        """Delete a plan together with its days, entries and shopping list."""
        with self.database.session() as session:
            plan = session.get(MealPlan, plan_id)
            if plan is None:
                return False
            session.delete(plan)
            session.commit()
        logger.info(f"Deleted meal plan {plan_id}")
        return True

    def auto_generate(
        self,
        plan_id: int,
        categories: Sequence[MealType | str] = DEFAULT_CATEGORIES,
        per_day: int = 1,
        use_calorie_target: bool = False,
        target_calories: int = 1800,
        calorie_margin: int = 200,
    ) -> AutoGenerateResult:
        """Fill every day of a plan with recipes.

        Standard mode tops each day up to ``per_day`` entries per category
        with random recipes, reporting categories that ran short. Calorie
        mode adds one recipe per category per day, chosen at random among
        the closest matches to an even share of ``target_calories``; recipes
        are not repeated across days, and days whose total is more than
        ``calorie_margin`` away from the target are reported.

        Args:
            plan_id: Plan to fill
            categories: Meal types (or their labels) to fill
            per_day: Entries per category per day (standard mode)
            use_calorie_target: Use calorie mode
            target_calories: Daily calorie goal (calorie mode)
            calorie_margin: Allowed deviation in kcal (calorie mode)

        Returns:
            Count of added entries and warnings

        Raises:
            MealPlanError: If the plan does not exist or has no days, or the
                arguments are invalid
        """
        if per_day < 1:
            raise MealPlanError("per_day must be at least 1", per_day=per_day)
        result = AutoGenerateResult()
        meal_types: list[MealType] = []
        for category in categories:
            meal_type = parse_category(category)
            if meal_type is None:
                result.warnings.append(f"Unknown category: {category}")
                continue
            meal_types.append(meal_type)
        if not meal_types:
            raise MealPlanError("No valid categories given")

        with self.database.session() as session:
            plan = session.scalar(
                select(MealPlan)
                .where(MealPlan.id == plan_id)
                .options(selectinload(MealPlan.days).selectinload(MealPlanDay.entries))
            )
            if plan is None:
                raise MealPlanError("Meal plan not found", plan_id=plan_id)
            if not plan.days:
                raise MealPlanError("Meal plan has no days", plan_id=plan_id)

            logger.info(
                f"Auto-generating plan {plan.name!r}: "
                f"{', '.join(m.value for m in meal_types)}"
                + (f", target {target_calories} ± {calorie_margin} kcal" if use_calorie_target else "")
            )

            pools = {m: _recipes_of_type(session, m) for m in meal_types}
            used_ids: set[str] = set()
            for day in plan.days:
                if use_calorie_target:
                    self._fill_day_by_calories(
                        day, meal_types, pools, used_ids, target_calories, calorie_margin, result
                    )
                else:
                    self._fill_day(day, meal_types, pools, per_day, result)
            session.commit()

        logger.info(f"Added {result.added_count} entries, {len(result.warnings)} warnings")
        return result

    def _fill_day(
        self,
        day: MealPlanDay,
        meal_types: list[MealType],
        pools: dict[MealType, list[Recipe]],
        per_day: int,
        result: AutoGenerateResult,
    ) -> None:
        missing: list[str] = []
        for meal_type in meal_types:
            existing = [e for e in day.entries if e.meal_type == meal_type]
            needed = per_day - len(existing)
            if needed <= 0:
                continue
            taken = {e.recipe.id for e in day.entries}
            candidates = [r for r in pools[meal_type] if r.id not in taken]
            picks = self.rng.sample(candidates, min(needed, len(candidates)))
            if len(picks) < needed:
                missing.append(f"{meal_type.value} (missing {needed - len(picks)})")
            for recipe in picks:
                self._append(day, recipe, meal_type)
                result.added_count += 1
        if missing:
            result.warnings.append(f"{_day_label(day)}: {', '.join(missing)}")

    def _fill_day_by_calories(
        self,
        day: MealPlanDay,
        meal_types: list[MealType],
        pools: dict[MealType, list[Recipe]],
        used_ids: set[str],
        target_calories: int,
        margin: int,
        result: AutoGenerateResult,
    ) -> None:
        per_category = target_calories // len(meal_types)
        low, high = max(0, per_category - margin), per_category + margin
        total = 0
        for meal_type in meal_types:
            unused = [r for r in pools[meal_type] if r.id not in used_ids]
            candidates = [r for r in unused if low <= r.calories <= high]
            if not candidates:
                candidates = self.rng.sample(unused, min(CALORIE_FALLBACK_POOL, len(unused)))
            if not candidates:
                result.warnings.append(f"{_day_label(day)}: no unused {meal_type.value} recipes")
                continue
            closest = sorted(candidates, key=lambda r: (abs(r.calories - per_category), r.id))
            recipe = self.rng.choice(closest[:CALORIE_TOP_MATCHES])
            used_ids.add(recipe.id)
            total += recipe.calories
            self._append(day, recipe, meal_type)
            result.added_count += 1

        if abs(total - target_calories) > margin:
            result.warnings.append(
                f"{_day_label(day)}: total {total} kcal is outside "
                f"{target_calories} ± {margin} kcal"
            )

    @staticmethod
    def _append(day: MealPlanDay, recipe: Recipe, meal_type: MealType) -> None:
        day.entries.append(MealPlanEntry(recipe=recipe, meal_type=meal_type, order=len(day.entries)))


def _recipes_of_type(session: Session, meal_type: MealType) -> list[Recipe]:
    """All recipes of one meal type in a stable order."""
    stmt = select(Recipe).where(Recipe.meal_type == meal_type).order_by(Recipe.id)
    return list(session.scalars(stmt))
