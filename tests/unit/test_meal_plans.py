"""Unit tests for diet_parser.meal_plans module."""

import random
from datetime import date

import pytest

from diet_parser.exceptions import MealPlanError
from diet_parser.meal_plans import MealPlanService, parse_category
from diet_parser.schema import MealType

MONDAY = date(2026, 1, 5)


@pytest.fixture
def service(database) -> MealPlanService:
    return MealPlanService(database, rng=random.Random(7))


@pytest.fixture
def stocked(repository, make_recipe):
    """Four recipes per main meal type with spread-out calories."""
    calories = {MealType.Breakfast: 400, MealType.Lunch: 700, MealType.Dinner: 500}
    for meal_type, base in calories.items():
        for i in range(4):
            repository.insert(
                make_recipe(f"{meal_type.value} {i}", meal_type=meal_type, calories=base + 50 * i)
            )
    return repository


class TestParseCategory:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (MealType.Dinner, MealType.Dinner),
            ("dinner", MealType.Dinner),
            ("Kolacja", MealType.Dinner),
            ("Śniadanie", MealType.Breakfast),
            ("Podwieczorek", None),
        ],
    )
    def test_values(self, value, expected) -> None:
        assert parse_category(value) is expected


class TestCreatePlan:
    """Tests for MealPlanService.create_plan."""

    def test_days_follow_start_date(self, service) -> None:
        plan = service.create_plan("Tydzień 1", MONDAY, number_of_days=7)

        assert plan.start_date == MONDAY
        assert plan.end_date == date(2026, 1, 11)
        assert [d.date.day for d in plan.days] == list(range(5, 12))
        assert [d.day_of_week for d in plan.days] == [0, 1, 2, 3, 4, 5, 6]

    @pytest.mark.parametrize("days", [0, 32, -1])
    def test_day_count_out_of_range(self, service, days: int) -> None:
        with pytest.raises(MealPlanError, match="between 1 and 31"):
            service.create_plan("X", MONDAY, number_of_days=days)

    def test_blank_name(self, service) -> None:
        with pytest.raises(MealPlanError):
            service.create_plan("  ", MONDAY)

    def test_list_plans(self, service) -> None:
        service.create_plan("A", MONDAY, 1)
        service.create_plan("B", date(2026, 2, 2), 1)
        assert [p.name for p in service.list_plans()] == ["B", "A"]


class TestEntries:
    def test_add_entry_uses_recipe_meal_type(self, service, repository, make_recipe) -> None:
        recipe = repository.insert(make_recipe("Owsianka", meal_type=MealType.Breakfast))
        plan = service.create_plan("A", MONDAY, 2)

        service.add_entry(plan.days[0].id, recipe.id)
        service.add_entry(plan.days[0].id, recipe.id, MealType.Dessert)

        day = service.get_plan(plan.id).days[0]
        assert [(e.meal_type, e.order) for e in day.entries] == [
            (MealType.Breakfast, 0),
            (MealType.Dessert, 1),
        ]
        assert day.entries[0].recipe.name == "Owsianka"

    def test_add_entry_unknown_ids(self, service, repository, make_recipe) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        recipe = repository.insert(make_recipe())
        with pytest.raises(MealPlanError, match="day not found"):
            service.add_entry(999, recipe.id)
        with pytest.raises(MealPlanError, match="Recipe not found"):
            service.add_entry(plan.days[0].id, "missing")

    def test_remove_entry(self, service, repository, make_recipe) -> None:
        recipe = repository.insert(make_recipe())
        plan = service.create_plan("A", MONDAY, 1)
        entry = service.add_entry(plan.days[0].id, recipe.id)

        assert service.remove_entry(entry.id)
        assert service.get_plan(plan.id).days[0].entries == []
        assert not service.remove_entry(entry.id)

    def test_deleting_recipe_removes_its_entries(self, service, repository, make_recipe) -> None:
        recipe = repository.insert(make_recipe())
        plan = service.create_plan("A", MONDAY, 1)
        service.add_entry(plan.days[0].id, recipe.id)

        repository.delete(recipe.id)

        assert service.get_plan(plan.id).days[0].entries == []

    def test_delete_plan_cascades(self, service, repository, make_recipe, database) -> None:
        from sqlalchemy import func, select

        from diet_parser.models import MealPlanDay, MealPlanEntry

        recipe = repository.insert(make_recipe())
        plan = service.create_plan("A", MONDAY, 3)
        service.add_entry(plan.days[0].id, recipe.id)

        assert service.delete_plan(plan.id)

        assert service.get_plan(plan.id) is None
        with database.session() as session:
            assert session.scalar(select(func.count()).select_from(MealPlanDay)) == 0
            assert session.scalar(select(func.count()).select_from(MealPlanEntry)) == 0
        assert repository.get(recipe.id) is not None
        assert not service.delete_plan(plan.id)


class TestAutoGenerate:
    """Tests for MealPlanService.auto_generate."""

    def test_standard_mode_fills_every_day(self, service, stocked) -> None:
        plan = service.create_plan("A", MONDAY, 3)

        result = service.auto_generate(plan.id, ["Breakfast", "Obiad", MealType.Dinner])

        assert result.added_count == 9
        assert result.warnings == []
        for day in service.get_plan(plan.id).days:
            assert sorted(e.meal_type.value for e in day.entries) == ["Breakfast", "Dinner", "Lunch"]

    def test_standard_mode_tops_up_existing_entries(self, service, stocked) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        existing = stocked.list_by_meal_type(MealType.Lunch)[0]
        service.add_entry(plan.days[0].id, existing.id)

        result = service.auto_generate(plan.id, [MealType.Lunch], per_day=2)

        assert result.added_count == 1
        entries = service.get_plan(plan.id).days[0].entries
        assert len({e.recipe.id for e in entries}) == 2

    def test_shortfall_is_reported(self, service, stocked) -> None:
        plan = service.create_plan("A", MONDAY, 1)

        result = service.auto_generate(plan.id, [MealType.Dessert])

        assert result.added_count == 0
        assert "Dessert (missing 1)" in result.warnings[0]

    def test_unknown_category_is_a_warning(self, service, stocked) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        result = service.auto_generate(plan.id, ["Lunch", "Podwieczorek"])
        assert result.added_count == 1
        assert "Unknown category: Podwieczorek" in result.warnings

    def test_no_valid_categories(self, service, stocked) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        with pytest.raises(MealPlanError):
            service.auto_generate(plan.id, ["Podwieczorek"])

    def test_unknown_plan(self, service) -> None:
        with pytest.raises(MealPlanError, match="not found"):
            service.auto_generate(404)

    def test_calorie_mode_does_not_repeat_recipes(self, service, stocked) -> None:
        plan = service.create_plan("A", MONDAY, 4)

        result = service.auto_generate(
            plan.id,
            use_calorie_target=True,
            target_calories=1800,
            calorie_margin=300,
        )

        assert result.added_count == 12
        ids = [e.recipe.id for d in service.get_plan(plan.id).days for e in d.entries]
        assert len(ids) == len(set(ids)) == 12

    def test_calorie_mode_picks_close_matches(self, service, repository, make_recipe) -> None:
        for calories in (100, 580, 600, 620, 1500):
            repository.insert(make_recipe(f"Obiad {calories}", meal_type=MealType.Lunch, calories=calories))
        plan = service.create_plan("A", MONDAY, 1)

        result = service.auto_generate(
            plan.id, [MealType.Lunch], use_calorie_target=True, target_calories=600, calorie_margin=50
        )

        [entry] = service.get_plan(plan.id).days[0].entries
        assert entry.recipe.calories in (580, 600, 620)
        assert result.warnings == []

    def test_calorie_mode_warns_when_recipes_run_out(self, service, repository, make_recipe) -> None:
        repository.insert(make_recipe("Obiad", meal_type=MealType.Lunch, calories=600))
        plan = service.create_plan("A", MONDAY, 2)

        result = service.auto_generate(
            plan.id, [MealType.Lunch], use_calorie_target=True, target_calories=600, calorie_margin=50
        )

        assert result.added_count == 1
        assert any("no unused Lunch recipes" in w for w in result.warnings)
        assert any("outside 600 ± 50 kcal" in w for w in result.warnings)

    def test_seeded_generation_is_reproducible(self, database, stocked) -> None:
        def generate() -> list[str]:
            service = MealPlanService(database, rng=random.Random(42))
            plan = service.create_plan("A", MONDAY, 2)
            service.auto_generate(plan.id)
            return [e.recipe.id for d in service.get_plan(plan.id).days for e in d.entries]

        assert generate() == generate()


class TestUpdatePlan:
    """Tests for MealPlanService.update_plan."""

    def test_changes_only_given_fields(self, service) -> None:
        plan = service.create_plan("Tydzień 1", MONDAY, 7)

        updated = service.update_plan(plan.id, name=" Tydzień 2 ", is_active=False)

        assert updated.name == "Tydzień 2"
        assert updated.is_active is False
        assert (updated.start_date, updated.end_date) == (MONDAY, date(2026, 1, 11))
        assert len(updated.days) == 7

    def test_dates(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 7)

        updated = service.update_plan(plan.id, end_date=date(2026, 1, 8))

        assert updated.end_date == date(2026, 1, 8)
        assert updated.updated_at is not None

    def test_end_before_start(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 3)
        with pytest.raises(MealPlanError, match="End date"):
            service.update_plan(plan.id, start_date=date(2026, 2, 1))
        assert service.get_plan(plan.id).start_date == MONDAY

    def test_blank_name_and_unknown_plan(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        with pytest.raises(MealPlanError, match="empty"):
            service.update_plan(plan.id, name="  ")
        with pytest.raises(MealPlanError, match="not found"):
            service.update_plan(404, name="B")


class TestEntryOrder:
    """Tests for MealPlanService.update_entry_order."""

    @pytest.fixture
    def day_entries(self, service, repository, make_recipe):
        plan = service.create_plan("A", MONDAY, 1)
        day_id = plan.days[0].id
        for name in ("Owsianka", "Zupa", "Omlet"):
            recipe = repository.insert(make_recipe(name))
            service.add_entry(day_id, recipe.id)
        return plan

    def _names(self, service, plan_id: int) -> list[tuple[str, int]]:
        entries = service.get_plan(plan_id).days[0].entries
        return [(e.recipe.name, e.order) for e in entries]

    def test_move_to_front(self, service, day_entries) -> None:
        entries = service.get_plan(day_entries.id).days[0].entries
        last = entries[2]

        assert service.update_entry_order(last.id, 0)

        assert self._names(service, day_entries.id) == [("Omlet", 0), ("Owsianka", 1), ("Zupa", 2)]

    def test_position_past_end_moves_last(self, service, day_entries) -> None:
        first = service.get_plan(day_entries.id).days[0].entries[0]

        assert service.update_entry_order(first.id, 10)

        assert self._names(service, day_entries.id) == [("Zupa", 0), ("Omlet", 1), ("Owsianka", 2)]

    def test_unknown_entry_and_negative_position(self, service, day_entries) -> None:
        first = service.get_plan(day_entries.id).days[0].entries[0]
        assert not service.update_entry_order(999, 0)
        with pytest.raises(MealPlanError, match="negative"):
            service.update_entry_order(first.id, -1)


class TestPersons:
    """Tests for the persons of a plan."""

    def test_add_and_list_in_order(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)

        anna = service.add_person(plan.id, " Anna ", 1600)
        tomek = service.add_person(plan.id, "Tomek", 2400)

        assert (anna.name, anna.sort_order) == ("Anna", 0)
        assert tomek.sort_order == 1
        assert [p.name for p in service.list_persons(plan.id)] == ["Anna", "Tomek"]
        assert [p.name for p in service.get_plan(plan.id).persons] == ["Anna", "Tomek"]

    @pytest.mark.parametrize("calories", [999, 5001, 0])
    def test_target_out_of_range(self, service, calories: int) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        with pytest.raises(MealPlanError, match="between 1000 and 5000"):
            service.add_person(plan.id, "Anna", calories)

    def test_name_is_unique_ignoring_case(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        service.add_person(plan.id, "Anna", 1600)
        with pytest.raises(MealPlanError, match="already exists"):
            service.add_person(plan.id, "ANNA", 2000)

    def test_same_name_on_another_plan(self, service) -> None:
        a = service.create_plan("A", MONDAY, 1)
        b = service.create_plan("B", MONDAY, 1)
        service.add_person(a.id, "Anna", 1600)
        assert service.add_person(b.id, "Anna", 1600).meal_plan_id == b.id

    def test_at_most_five_persons(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        for i in range(5):
            service.add_person(plan.id, f"Osoba {i}", 2000)
        with pytest.raises(MealPlanError, match="at most 5"):
            service.add_person(plan.id, "Osoba 5", 2000)

    def test_blank_name_and_unknown_plan(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        with pytest.raises(MealPlanError, match="empty"):
            service.add_person(plan.id, " ", 2000)
        with pytest.raises(MealPlanError, match="not found"):
            service.add_person(404, "Anna", 2000)

    def test_update_person(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        anna = service.add_person(plan.id, "Anna", 1600)
        service.add_person(plan.id, "Tomek", 2400)

        updated = service.update_person(anna.id, target_calories=1800)

        assert (updated.name, updated.target_calories) == ("Anna", 1800)
        assert service.update_person(anna.id, name="anna").name == "anna"
        with pytest.raises(MealPlanError, match="already exists"):
            service.update_person(anna.id, name="tomek")
        with pytest.raises(MealPlanError, match="between"):
            service.update_person(anna.id, target_calories=6000)
        with pytest.raises(MealPlanError, match="not found"):
            service.update_person(999, name="X")

    def test_remove_person(self, service) -> None:
        plan = service.create_plan("A", MONDAY, 1)
        anna = service.add_person(plan.id, "Anna", 1600)

        assert service.remove_person(anna.id)
        assert service.list_persons(plan.id) == []
        assert not service.remove_person(anna.id)

    def test_delete_plan_removes_persons(self, service, database) -> None:
        from sqlalchemy import func, select

        from diet_parser.models import MealPlanPerson

        plan = service.create_plan("A", MONDAY, 1)
        service.add_person(plan.id, "Anna", 1600)

        assert service.delete_plan(plan.id)
        with database.session() as session:
            assert session.scalar(select(func.count()).select_from(MealPlanPerson)) == 0
