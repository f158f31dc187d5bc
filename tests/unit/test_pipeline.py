"""Unit tests for diet_parser.pipeline module.

Tests pipeline stages, the processing status and batch runs end to end
against an in-memory database with a scripted provider.
"""

import asyncio
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import FakePageSource, ScriptedCapability, recipe_json

from diet_parser.decoder import MAX_DECODED_INT
from diet_parser.exceptions import InvalidConfiguration, RetryableError
from diet_parser.extraction import ExtractionAdapter
from diet_parser.ledger import SourceDocument
from diet_parser.pipeline import (
    ChunkingStage,
    DocumentContext,
    LedgerStage,
    PipelineStage,
    ProcessingStatus,
    RecipeProcessor,
    RunSummary,
    default_stages,
)
from diet_parser.providers import AIProviderConfig
from diet_parser.retry import RetryConfig
from diet_parser.schema import MealType


def make_processor(
    config,
    provider,
    capability: ScriptedCapability,
    repository,
    ledger,
    page_source: FakePageSource,
    **kwargs,
) -> RecipeProcessor:
    adapter = ExtractionAdapter(
        retry=RetryConfig(max_attempts=config.retry_attempts, delay=0.0),
        capability_factory=lambda p: capability,
    )
    return RecipeProcessor(
        config=config,
        provider=provider,
        adapter=adapter,
        repository=repository,
        ledger=ledger,
        reader=page_source,
        **kwargs,
    )


class TestRunSummary:
    def test_describe(self) -> None:
        summary = RunSummary(recipes_extracted=42, chunks_attempted=17, errors=1)
        assert summary.describe() == "Extracted 42 recipes from 17 chunks with 1 error"

    def test_describe_plural_errors(self) -> None:
        assert RunSummary(errors=0).describe().endswith("with 0 errors")


class TestProcessingStatus:
    def test_record_error(self) -> None:
        status = ProcessingStatus()
        status.record_error(ValueError("boom"))
        assert status.errors == 1
        assert status.last_error == "boom"

    def test_snapshot_keys(self) -> None:
        snapshot = ProcessingStatus(is_running=True, current_file="a.pdf").snapshot()
        assert snapshot["isRunning"] is True
        assert snapshot["currentFile"] == "a.pdf"
        assert snapshot["message"] == "Idle"


class TestDocumentContext:
    def test_report_progress_with_callback(self, config, provider_config, write_pdf) -> None:
        callback = MagicMock()
        ctx = DocumentContext(
            doc=SourceDocument.from_path(write_pdf("a.pdf")),
            provider=provider_config,
            config=config,
            progress_callback=callback,
        )

        ctx.report_progress("Extraction", 2, 3)

        callback.assert_called_once_with("Extraction", 2, 3)


class TestStages:
    def test_default_stage_order(self) -> None:
        assert [s.name for s in default_stages()] == [
            "Chunking",
            "Extraction",
            "Merge",
            "Persistence",
            "Ledger",
        ]

    def test_stages_are_pipeline_stages(self) -> None:
        assert all(isinstance(s, PipelineStage) for s in default_stages())

    async def test_chunking_direct_pdf(self, config, repository, ledger, write_pdf) -> None:
        """Providers that read PDFs get one chunk carrying the file bytes."""
        path = write_pdf("a.pdf", b"%PDF-direct")
        provider = AIProviderConfig(name="gemini", model="g", supports_direct_pdf=True)
        source = FakePageSource({"a.pdf": ["1", "2", "3", "4", "5"]})
        processor = make_processor(config, provider, ScriptedCapability(), repository, ledger, source)
        ctx = DocumentContext(doc=SourceDocument.from_path(path), provider=provider, config=config)

        await ChunkingStage().execute(ctx, processor)

        assert len(ctx.chunks) == 1
        assert ctx.chunks[0].pdf_bytes == b"%PDF-direct"
        assert ctx.chunks[0].total_pages == 5

    async def test_ledger_stage_skips_after_transport_failure(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        from diet_parser.exceptions import ExtractionTransportFailure
        from diet_parser.extraction import ExtractionRecord

        doc = SourceDocument.from_path(write_pdf("a.pdf"))
        processor = make_processor(
            config, provider_config, ScriptedCapability(), repository, ledger, FakePageSource()
        )
        ctx = DocumentContext(doc=doc, provider=provider_config, config=config)
        ctx.records = [ExtractionRecord(1, error=ExtractionTransportFailure("down"))]

        await LedgerStage().execute(ctx, processor)

        assert ledger.should_process(doc)


class TestRecipeProcessor:
    """End-to-end runs through every stage."""

    async def test_seven_pages_three_per_chunk(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        """A 7-page file is sent as 3 chunks and its recipes are stored once."""
        path = write_pdf("tydzien-1.pdf", b"week one")
        source = FakePageSource({"tydzien-1.pdf": [f"strona {i}" for i in range(1, 8)]})
        capability = ScriptedCapability(
            [
                recipe_json("Owsianka", meal_type="Sniadanie"),
                recipe_json("Zupa krem z dyni", "owsianka"),
                recipe_json("Kurczak curry", meal_type="Kolacja"),
            ]
        )
        processor = make_processor(config, provider_config, capability, repository, ledger, source)

        summary = await processor.run([path])

        assert len(capability.calls) == 3
        assert summary.chunks_attempted == 3
        assert summary.recipes_extracted == 3
        assert summary.recipes_saved == 3
        assert summary.errors == 0
        assert summary.files_processed == 1
        assert source.rendered == [
            ("tydzien-1.pdf", [1, 2, 3]),
            ("tydzien-1.pdf", [4, 5, 6]),
            ("tydzien-1.pdf", [7]),
        ]
        assert "strona 7" in capability.calls[2]["prompt"]
        assert "- Owsianka" in capability.calls[1]["prompt"]

        by_type = {r.name: r.meal_type for r in repository.list_by_meal_type()}
        assert by_type == {
            "Owsianka": MealType.Breakfast,
            "Zupa krem z dyni": MealType.Lunch,
            "Kurczak curry": MealType.Dinner,
        }
        assert not ledger.should_process(SourceDocument.from_path(path))
        [row] = ledger.records()
        assert row.recipes_extracted == 3

    async def test_processed_file_is_skipped_without_calls(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        path = write_pdf("a.pdf", b"A")
        source = FakePageSource({"a.pdf": ["strona 1"]})
        capability = ScriptedCapability([recipe_json("Owsianka")])
        processor = make_processor(config, provider_config, capability, repository, ledger, source)
        await processor.run([path])

        summary = await processor.run([path])

        assert len(capability.calls) == 1
        assert summary.files_skipped == 1
        assert summary.chunks_attempted == 0

    async def test_interrupted_run_resumes_with_failed_file(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        """File A completes, B fails in transport; the next run only does B."""
        a = write_pdf("a.pdf", b"A")
        b = write_pdf("b.pdf", b"B")
        source = FakePageSource({"a.pdf": ["strona A"], "b.pdf": ["strona B"]})
        failing = ScriptedCapability([recipe_json("Owsianka")] + [RetryableError("timeout")] * 3)
        first = make_processor(config, provider_config, failing, repository, ledger, source)

        summary = await first.run([a, b])

        assert summary.errors == 1
        assert summary.recipes_saved == 1
        assert not ledger.should_process(SourceDocument.from_path(a))
        assert ledger.should_process(SourceDocument.from_path(b))

        working = ScriptedCapability([recipe_json("Omlet")])
        second = make_processor(config, provider_config, working, repository, ledger, source)
        summary = await second.run([a, b])

        assert len(working.calls) == 1
        assert "strona B" in working.calls[0]["prompt"]
        assert summary.files_skipped == 1
        assert {r.name for r in repository.list_by_meal_type()} == {"Owsianka", "Omlet"}

    async def test_failed_chunk_does_not_stop_the_file(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        path = write_pdf("a.pdf", b"A")
        source = FakePageSource({"a.pdf": [f"strona {i}" for i in range(1, 7)]})
        capability = ScriptedCapability(["not json at all", recipe_json("Omlet")])
        processor = make_processor(config, provider_config, capability, repository, ledger, source)

        summary = await processor.run([path])

        assert summary.errors == 1
        assert summary.recipes_saved == 1
        assert processor.status.last_error is not None
        # A parse failure still completes the file
        assert not ledger.should_process(SourceDocument.from_path(path))

    async def test_fixed_delay_between_provider_calls(
        self, config, provider_config, repository, ledger, write_pdf, monkeypatch
    ) -> None:
        """Calls within a file are spaced by the delay, with none before the first."""
        events: list[tuple[str, float]] = []

        async def fake_sleep(delay: float) -> None:
            events.append(("sleep", delay))

        def answer(prompt: str) -> str:
            events.append(("call", 0.0))
            return '{"recipes": []}'

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        config.update(delay_between_chunks=2.5)
        path = write_pdf("a.pdf", b"A")
        source = FakePageSource({"a.pdf": [f"strona {i}" for i in range(1, 8)]})
        capability = ScriptedCapability([answer, answer, answer])
        processor = make_processor(config, provider_config, capability, repository, ledger, source)

        await processor.run([path])

        assert events == [
            ("call", 0.0),
            ("sleep", 2.5),
            ("call", 0.0),
            ("sleep", 2.5),
            ("call", 0.0),
        ]

    async def test_oversized_numbers_do_not_abort_run(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        """A recipe with an absurd calorie value is stored clamped; later files still run."""
        a = write_pdf("a.pdf", b"A")
        b = write_pdf("b.pdf", b"B")
        source = FakePageSource({"a.pdf": ["strona A"], "b.pdf": ["strona B"]})
        huge = json.loads(recipe_json("Owsianka", calories="99999999999999999999"))
        huge["recipes"] += json.loads(recipe_json("Omlet"))["recipes"]
        capability = ScriptedCapability(
            [json.dumps(huge), recipe_json("Kurczak curry", calories="1e2000000")]
        )
        processor = make_processor(config, provider_config, capability, repository, ledger, source)

        summary = await processor.run([a, b])

        assert summary.errors == 0
        assert summary.files_processed == 2
        calories = {r.name: r.calories for r in repository.list_by_meal_type()}
        assert calories == {
            "Owsianka": MAX_DECODED_INT,
            "Omlet": 400,
            "Kurczak curry": MAX_DECODED_INT,
        }

    async def test_existing_names_are_skipped(
        self, config, provider_config, repository, ledger, write_pdf, make_recipe
    ) -> None:
        repository.insert(make_recipe("Owsianka"))
        path = write_pdf("a.pdf", b"A")
        source = FakePageSource({"a.pdf": ["strona 1"]})
        capability = ScriptedCapability([recipe_json("OWSIANKA", "Omlet")])
        processor = make_processor(config, provider_config, capability, repository, ledger, source)

        summary = await processor.run([path])

        assert summary.duplicates_skipped == 1
        assert summary.recipes_saved == 1
        assert repository.count() == 2
        assert "- Owsianka" in capability.calls[0]["prompt"]

    async def test_duplicates_inserted_when_check_disabled(
        self, config, provider_config, repository, ledger, write_pdf, make_recipe
    ) -> None:
        config.update(check_duplicates=False)
        repository.insert(make_recipe("Owsianka"))
        path = write_pdf("a.pdf", b"A")
        processor = make_processor(
            config,
            provider_config,
            ScriptedCapability([recipe_json("Owsianka")]),
            repository,
            ledger,
            FakePageSource({"a.pdf": ["strona 1"]}),
        )

        await processor.run([path])

        assert repository.count() == 2

    async def test_unreadable_file_is_counted_and_next_file_processed(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        broken = write_pdf("broken.pdf", b"X")
        good = write_pdf("good.pdf", b"G")
        source = FakePageSource({"good.pdf": ["strona 1"]})
        capability = ScriptedCapability([recipe_json("Omlet")])
        processor = make_processor(config, provider_config, capability, repository, ledger, source)

        summary = await processor.run([broken, good, Path("missing.pdf")])

        assert summary.errors == 2
        assert summary.files_processed == 1
        assert repository.count() == 1

    async def test_progress_callback_and_status(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        path = write_pdf("a.pdf", b"A")
        callback = MagicMock()
        processor = make_processor(
            config,
            provider_config,
            ScriptedCapability(),
            repository,
            ledger,
            FakePageSource({"a.pdf": ["1", "2", "3", "4"]}),
            progress_callback=callback,
        )

        await processor.run([path])

        callback.assert_any_call("Extraction", 1, 2)
        callback.assert_any_call("Extraction", 2, 2)
        assert not processor.status.is_running
        assert processor.status.message == "Finished"

    async def test_cancel_stops_before_next_file(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        a = write_pdf("a.pdf", b"A")
        b = write_pdf("b.pdf", b"B")
        processor: RecipeProcessor

        def cancel_during_first(prompt: str) -> str:
            processor.cancel()
            return recipe_json("Owsianka")

        processor = make_processor(
            config,
            provider_config,
            ScriptedCapability([cancel_during_first]),
            repository,
            ledger,
            FakePageSource({"a.pdf": ["A"], "b.pdf": ["B"]}),
        )

        summary = await processor.run([a, b])

        assert summary.cancelled
        assert summary.files_processed == 1
        assert ledger.should_process(SourceDocument.from_path(b))
        assert processor.status.message == "Cancelled"

    async def test_invalid_provider_configuration_stops_run(
        self, config, provider_config, repository, ledger, write_pdf
    ) -> None:
        def no_key(provider):
            raise InvalidConfiguration("No API key configured")

        processor = RecipeProcessor(
            config=config,
            provider=provider_config,
            adapter=ExtractionAdapter(capability_factory=no_key),
            repository=repository,
            ledger=ledger,
            reader=FakePageSource({"a.pdf": ["1"]}),
        )

        with pytest.raises(InvalidConfiguration):
            await processor.run([write_pdf("a.pdf", b"A")])
        assert not processor.status.is_running

    async def test_second_concurrent_run_rejected(self, config, provider_config, repository, ledger) -> None:
        processor = make_processor(
            config, provider_config, ScriptedCapability(), repository, ledger, FakePageSource()
        )
        processor.status.is_running = True

        with pytest.raises(InvalidConfiguration, match="already running"):
            await processor.run([])
