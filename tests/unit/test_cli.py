"""Unit tests for diet_parser.cli module.

Tests CLI argument parsing, logging setup, display functions and the
subcommands against a temporary SQLite database.
"""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import FakePageSource, ScriptedCapability, recipe_json
from rich.progress import Progress

from diet_parser.cli import (
    build_parser,
    create_progress,
    display_error,
    display_summary,
    main,
    main_async,
    setup_logging,
)
from diet_parser.extraction import ExtractionAdapter
from diet_parser.pipeline import RunSummary
from diet_parser.retry import RetryConfig
from diet_parser.services import ServiceFactory


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, clean_env) -> Path:
    """Run commands from a temporary directory with its own database."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DIET_PARSER_DATABASE_URL", f"sqlite:///{tmp_path / 'recipes.db'}")
    monkeypatch.setenv("DIET_PARSER_DELAY_BETWEEN_CHUNKS", "0")
    return tmp_path


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_configures_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "test.log"
        root_logger = logging.getLogger()
        original_handlers = root_logger.handlers.copy()
        root_logger.handlers.clear()

        try:
            setup_logging(str(log_file))
            handler_types = [type(h).__name__ for h in root_logger.handlers]
            assert "FileHandler" in handler_types
            logging.info("Test log message")
            assert log_file.exists()
        finally:
            for handler in root_logger.handlers:
                handler.close()
            root_logger.handlers = original_handlers


class TestParser:
    """Tests for build_parser."""

    def test_process_arguments(self) -> None:
        args = build_parser().parse_args(["process", "a.pdf", "b.pdf", "--delay", "2", "--debug"])
        assert args.command == "process"
        assert args.paths == ["a.pdf", "b.pdf"]
        assert args.delay == 2.0
        assert args.debug

    def test_provider_add_arguments(self) -> None:
        args = build_parser().parse_args(
            ["providers", "add", "gemini", "gemini-2.5-flash", "--max-pages", "5", "--direct-pdf"]
        )
        assert args.provider_command == "add"
        assert args.max_pages == 5
        assert args.direct_pdf

    def test_plan_auto_defaults(self) -> None:
        args = build_parser().parse_args(["plan", "auto", "3"])
        assert args.plan_id == 3
        assert args.categories == ["Breakfast", "Lunch", "Dinner"]
        assert args.calorie_target is None

    def test_plan_update_status_is_optional(self) -> None:
        parser = build_parser()
        assert parser.parse_args(["plan", "update", "1", "--name", "B"]).is_active is None
        assert parser.parse_args(["plan", "update", "1", "--inactive"]).is_active is False
        assert parser.parse_args(["plan", "update", "1", "--active"]).is_active is True
        with pytest.raises(SystemExit):
            parser.parse_args(["plan", "update", "1", "--active", "--inactive"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["providers", "add", "llama", "x"])


class TestDisplay:
    def test_create_progress(self) -> None:
        assert isinstance(create_progress(), Progress)

    def test_display_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        display_summary(RunSummary(recipes_extracted=5, recipes_saved=4, chunks_attempted=3), 75.0)
        out = capsys.readouterr().out
        assert "Recipes Saved" in out
        assert "1m 15s" in out

    def test_display_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        display_error("Configuration Error", "No AI provider configured")
        assert "No AI provider configured" in capsys.readouterr().out


class TestCommands:
    """Tests for main_async subcommands."""

    async def test_providers_add_and_list(self, workdir: Path, capsys) -> None:
        assert await main_async(["providers", "add", "openai", "gpt-test", "--activate"]) == 0
        assert await main_async(["providers", "list"]) == 0
        assert "gpt-test" in capsys.readouterr().out

    async def test_process_without_pdfs(self, workdir: Path, capsys) -> None:
        (workdir / "empty").mkdir()
        assert await main_async(["process", "--dir", "empty"]) == 0
        assert "No PDF files" in capsys.readouterr().out

    async def test_process_without_provider(self, workdir: Path, capsys) -> None:
        (workdir / "a.pdf").write_bytes(b"A")
        assert await main_async(["process", "a.pdf"]) == 2
        assert "No AI provider configured" in capsys.readouterr().out

    async def test_process_end_to_end(self, workdir: Path, capsys) -> None:
        (workdir / "a.pdf").write_bytes(b"A")
        await main_async(["providers", "add", "openai", "gpt-test", "--max-pages", "2"])
        capability = ScriptedCapability([recipe_json("Owsianka"), recipe_json("Omlet")])
        adapter = ExtractionAdapter(
            retry=RetryConfig(delay=0.0), capability_factory=lambda provider: capability
        )
        source = FakePageSource({"a.pdf": ["1", "2", "3"]})

        with (
            patch.object(ServiceFactory, "create_adapter", return_value=adapter),
            patch.object(ServiceFactory, "create_pdf_reader", return_value=source),
        ):
            assert await main_async(["process", "a.pdf"]) == 0
            assert await main_async(["recipes"]) == 0

        out = capsys.readouterr().out
        assert "Processing Complete" in out
        assert "Omlet" in out
        assert len(capability.calls) == 2

    async def test_invalid_config_exits_2(self, workdir: Path, monkeypatch) -> None:
        monkeypatch.setenv("DIET_PARSER_RETRY_ATTEMPTS", "0")
        assert await main_async(["ledger", "list"]) == 2

    async def test_plan_lifecycle(self, workdir: Path, capsys) -> None:
        create = ["plan", "create", "Tydzień 1", "--start", "2026-01-05", "--days", "3"]
        assert await main_async(create) == 0
        assert await main_async(["plan", "show", "1"]) == 0
        out = capsys.readouterr().out
        assert "Tydzień 1" in out
        assert "empty" in out

        assert await main_async(["plan", "auto", "1", "--seed", "1"]) == 0
        assert "Breakfast (missing 1)" in capsys.readouterr().out

        assert await main_async(["shopping-list", "1", "--no-ai"]) == 1
        assert "no recipes" in capsys.readouterr().out

        assert await main_async(["plan", "delete", "1"]) == 0
        assert await main_async(["plan", "show", "1"]) == 1

    async def test_plan_persons_and_scaling(self, workdir: Path, capsys) -> None:
        from diet_parser.config import ExtractionConfig
        from diet_parser.models import Recipe
        from diet_parser.schema import MealType

        factory = ServiceFactory(config=ExtractionConfig.load())
        factory.create_repository().insert(
            Recipe(
                name="Zupa dyniowa",
                ingredients="500 g dyni",
                calories=500,
                meal_type=MealType.Lunch,
            )
        )
        create = ["plan", "create", "Dom", "--start", "2026-01-05", "--days", "1"]
        assert await main_async(create) == 0
        assert await main_async(["plan", "auto", "1", "--categories", "Lunch"]) == 0
        assert await main_async(["plan", "add-person", "1", "Anna", "1600"]) == 0
        assert await main_async(["plan", "add-person", "1", "Tomek", "2400"]) == 0
        assert await main_async(["plan", "add-person", "1", "Ola", "900"]) == 1
        assert await main_async(["plan", "update-person", "2", "--calories", "2000"]) == 0
        capsys.readouterr()

        assert await main_async(["plan", "scale", "1", "--no-ai"]) == 0
        out = capsys.readouterr().out
        assert "Anna" in out
        assert "Tomek" in out
        assert "0.89" in out

        assert await main_async(["plan", "update", "1", "--name", "Dom 2", "--inactive"]) == 0
        assert "inactive" in capsys.readouterr().out
        assert await main_async(["plan", "move", "1", "0"]) == 0
        assert await main_async(["plan", "move", "99", "0"]) == 1
        assert await main_async(["plan", "remove-person", "1"]) == 0
        assert await main_async(["plan", "show", "1"]) == 0
        assert "Persons: Tomek (2000 kcal)" in capsys.readouterr().out

    async def test_ledger_forget_unknown(self, workdir: Path) -> None:
        assert await main_async(["ledger", "forget", "a.pdf"]) == 1


class TestMain:
    def test_exit_code(self, workdir: Path) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["ledger", "list"])
        assert exc_info.value.code == 0

    def test_keyboard_interrupt(self, capsys) -> None:
        with patch("diet_parser.cli.main_async", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                main(["ledger", "list"])
        assert exc_info.value.code == 130
        assert "interrupted" in capsys.readouterr().out

    def test_unexpected_error_is_reraised(self, capsys) -> None:
        with patch("diet_parser.cli.main_async", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                main(["ledger", "list"])
        assert "An unexpected error occurred" in capsys.readouterr().out
