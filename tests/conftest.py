"""Pytest configuration and fixtures for diet_parser tests.

This module provides shared fixtures for testing the diet_parser package.
Fixtures follow pytest best practices:
- Use yield for cleanup
- Use monkeypatch for environment manipulation
- Use tmp_path for file operations
"""

import sys
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


# ============================================================================
# Fakes
# ============================================================================


class FakePageSource:
    """In-memory PageSource keyed by file name."""

    def __init__(self, pages: dict[str, list[str]] | None = None) -> None:
        self.pages = pages or {}
        self.rendered: list[tuple[str, list[int]]] = []

    def page_texts(self, path: Path) -> list[str]:
        from diet_parser.exceptions import PdfProcessingError

        if path.name not in self.pages:
            raise PdfProcessingError("Could not open PDF", path=str(path))
        return list(self.pages[path.name])

    def render_pages(self, path: Path, page_numbers: Iterable[int]) -> list[bytes]:
        numbers = list(page_numbers)
        self.rendered.append((path.name, numbers))
        return [f"png-{n}".encode() for n in numbers]

    def read_bytes(self, path: Path) -> bytes:
        return Path(path).read_bytes()


class ScriptedCapability:
    """Provider capability that replays scripted responses.

    Each entry is either response text or an exception to raise. A callable
    entry is called with the prompt and its result is used instead.
    """

    def __init__(self, responses: Sequence[Any] = ()) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def invoke(
        self,
        prompt: str,
        pdf_bytes: bytes | None = None,
        images: Sequence[bytes] = (),
    ) -> str:
        self.calls.append({"prompt": prompt, "pdf_bytes": pdf_bytes, "images": list(images)})
        if not self.responses:
            return '{"recipes": []}'
        response = self.responses.pop(0)
        if callable(response) and not isinstance(response, type):
            response = response(prompt)
        if isinstance(response, BaseException):
            raise response
        return response


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all DIET_PARSER_* environment variables and the user config.

    Use this fixture when testing configuration loading to ensure
    no environment variables interfere with test expectations.
    """
    import os

    for key in list(os.environ.keys()):
        if key.startswith("DIET_PARSER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Provide a helper to set DIET_PARSER_* environment variables.

    Example:
        def test_env_loading(mock_env):
            mock_env["RETRY_ATTEMPTS"] = "5"
            # DIET_PARSER_RETRY_ATTEMPTS is now set
    """

    class EnvSetter(dict[str, str]):
        def __setitem__(self, key: str, value: str) -> None:
            super().__setitem__(key, value)
            monkeypatch.setenv(f"DIET_PARSER_{key}", value)

    return EnvSetter()


@pytest.fixture
def config():
    """ExtractionConfig with an in-memory database and no waiting."""
    from diet_parser.config import ExtractionConfig

    return ExtractionConfig(
        database_url="sqlite://",
        delay_between_chunks=0.0,
        retry_attempts=3,
        retry_delay=0.0,
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def database():
    """In-memory database with all tables created."""
    from diet_parser.db import Database

    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def repository(database):
    from diet_parser.repository import SqlRecipeRepository

    return SqlRecipeRepository(database)


@pytest.fixture
def ledger(database):
    from diet_parser.ledger import ProcessingLedger

    return ProcessingLedger(database)


@pytest.fixture
def make_recipe() -> Callable[..., Any]:
    """Factory for unsaved Recipe entities with sensible defaults."""
    from diet_parser.models import Recipe
    from diet_parser.schema import MealType

    def _make(name: str = "Owsianka z jabłkiem", **overrides: Any) -> Recipe:
        values: dict[str, Any] = {
            "name": name,
            "description": "",
            "ingredients": "50 g płatków owsianych\n1 jabłko",
            "instructions": "1. Ugotuj płatki.\n2. Dodaj jabłko.",
            "calories": 350,
            "protein": 10.0,
            "carbohydrates": 60.0,
            "fat": 6.0,
            "meal_type": MealType.Breakfast,
        }
        values.update(overrides)
        return Recipe(**values)

    return _make


# ============================================================================
# Provider and PDF Fixtures
# ============================================================================


@pytest.fixture
def page_source() -> FakePageSource:
    return FakePageSource()


@pytest.fixture
def scripted_capability() -> ScriptedCapability:
    return ScriptedCapability()


@pytest.fixture
def provider_config():
    """Page-window provider configuration (3 pages per chunk)."""
    from diet_parser.providers import AIProviderConfig

    return AIProviderConfig(name="openai", model="gpt-test", api_key="sk-test", max_pages_per_chunk=3)


@pytest.fixture
def write_pdf(tmp_path: Path) -> Callable[[str, bytes], Path]:
    """Write a file whose content stands in for a PDF (checksums only read bytes)."""

    def _write(name: str, content: bytes = b"%PDF-1.7 test") -> Path:
        path = tmp_path / "pdfs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _write


def recipe_json(*names: str, meal_type: str = "Obiad", calories: Any = 400) -> str:
    """Provider response text containing one complete recipe per name."""
    import json

    return json.dumps(
        {
            "recipes": [
                {
                    "name": name,
                    "ingredients": [f"składnik {name}"],
                    "instructions": "Wymieszać.",
                    "calories": calories,
                    "protein": "20",
                    "carbohydrates": 30.5,
                    "fat": "10",
                    "mealType": meal_type,
                }
                for name in names
            ]
        },
        ensure_ascii=False,
    )
