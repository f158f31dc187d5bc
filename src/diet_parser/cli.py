#!/usr/bin/env python3
"""CLI for diet-parser: Extract recipes from PDF diet plans.

This module provides the command-line interface for processing diet-plan
PDFs, managing AI providers and building meal plans, per-person portions
and shopping lists.

The CLI is responsible for:
- Argument parsing
- Progress display (Rich UI)
- Error presentation
- Calling the services for business logic
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .config import ExtractionConfig
from .exceptions import DietParserError, InvalidConfiguration
from .pipeline import RunSummary
from .providers import AIProviderConfig
from .schema import MealType
from .services import ServiceFactory

# Create global Rich console for styled output
console = Console()


def setup_logging(log_file: str = "diet_parser.log", verbose: bool = False) -> None:
    """Set up logging configuration for the application.

    Configures logging to output detailed logs to a file only.
    Console output is handled separately via Rich for better visual presentation.

    Args:
        log_file: Path to the log file. Defaults to "diet_parser.log".
        verbose: Log at DEBUG instead of INFO
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_file, mode="a", encoding="utf-8")],
    )


def create_progress() -> Progress:
    """Create a Rich progress bar with standard configuration."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Extract recipes from PDF diet plans", prog="diet-parse"
    )
    parser.add_argument("--config", type=str, help="Path to a TOML configuration file")
    parser.add_argument("--database", type=str, help="Database URL (overrides configuration)")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Extract recipes from PDF files")
    process.add_argument("paths", nargs="*", help="PDF files (default: all PDFs in pdf_source_dir)")
    process.add_argument("--dir", type=str, help="Directory to scan instead of pdf_source_dir")
    process.add_argument("--delay", type=float, help="Seconds between provider calls")
    process.add_argument(
        "--no-check-duplicates", action="store_true", help="Insert recipes even if the name exists"
    )
    process.add_argument("--debug", action="store_true", help="Save prompts and responses")

    providers = commands.add_parser("providers", help="Manage AI providers")
    provider_commands = providers.add_subparsers(dest="provider_command", required=True)
    provider_commands.add_parser("list", help="List configured providers")
    add = provider_commands.add_parser("add", help="Add a provider")
    add.add_argument("name", choices=["openai", "gemini"], help="Provider family")
    add.add_argument("model", help="Model identifier")
    add.add_argument("--api-key", type=str, help="API key (default: from environment)")
    add.add_argument("--priority", type=int, default=100, help="Lower is preferred (default: 100)")
    add.add_argument("--max-pages", type=int, default=3, help="Pages per chunk (default: 3)")
    add.add_argument("--direct-pdf", action="store_true", help="Send whole PDFs to the provider")
    add.add_argument("--activate", action="store_true", help="Make this the active provider")
    activate = provider_commands.add_parser("activate", help="Make a provider active")
    activate.add_argument("provider_id", type=int)

    ledger = commands.add_parser("ledger", help="Inspect processed files")
    ledger_commands = ledger.add_subparsers(dest="ledger_command", required=True)
    ledger_commands.add_parser("list", help="List processed files")
    forget = ledger_commands.add_parser("forget", help="Process a file again on the next run")
    forget.add_argument("filename")

    recipes = commands.add_parser("recipes", help="List stored recipes")
    recipes.add_argument("--meal-type", choices=[m.value for m in MealType])

    plan = commands.add_parser("plan", help="Manage meal plans")
    plan_commands = plan.add_subparsers(dest="plan_command", required=True)
    create = plan_commands.add_parser("create", help="Create a meal plan")
    create.add_argument("name")
    create.add_argument("--start", type=date.fromisoformat, default=date.today())
    create.add_argument("--days", type=int, default=7)
    auto = plan_commands.add_parser("auto", help="Fill a plan with recipes")
    auto.add_argument("plan_id", type=int)
    auto.add_argument(
        "--categories",
        nargs="+",
        default=[MealType.Breakfast.value, MealType.Lunch.value, MealType.Dinner.value],
    )
    auto.add_argument("--per-day", type=int, default=1)
    auto.add_argument("--calorie-target", type=int, help="Daily calorie goal")
    auto.add_argument("--margin", type=int, default=200, help="Allowed deviation in kcal")
    auto.add_argument("--seed", type=int, help="Random seed")
    show = plan_commands.add_parser("show", help="Show a meal plan")
    show.add_argument("plan_id", type=int)
    delete = plan_commands.add_parser("delete", help="Delete a meal plan")
    delete.add_argument("plan_id", type=int)
    update = plan_commands.add_parser("update", help="Change a plan's name, dates or status")
    update.add_argument("plan_id", type=int)
    update.add_argument("--name", type=str)
    update.add_argument("--start", type=date.fromisoformat)
    update.add_argument("--end", type=date.fromisoformat)
    status = update.add_mutually_exclusive_group()
    status.add_argument("--active", dest="is_active", action="store_true", default=None)
    status.add_argument("--inactive", dest="is_active", action="store_false", default=None)
    move = plan_commands.add_parser("move", help="Move an entry within its day")
    move.add_argument("entry_id", type=int)
    move.add_argument("position", type=int, help="New position, 0 is first")
    person_add = plan_commands.add_parser("add-person", help="Add a person to a plan")
    person_add.add_argument("plan_id", type=int)
    person_add.add_argument("name")
    person_add.add_argument("calories", type=int, help="Daily calorie target (1000-5000)")
    person_update = plan_commands.add_parser(
        "update-person", help="Rename a person or change their calorie target"
    )
    person_update.add_argument("person_id", type=int)
    person_update.add_argument("--name", type=str)
    person_update.add_argument("--calories", type=int)
    person_remove = plan_commands.add_parser("remove-person", help="Remove a person from a plan")
    person_remove.add_argument("person_id", type=int)
    scale = plan_commands.add_parser("scale", help="Scale an entry's recipe for every person")
    scale.add_argument("entry_id", type=int)
    scale.add_argument("--no-ai", action="store_true", help="Keep base ingredient quantities")

    shopping = commands.add_parser("shopping-list", help="Build a plan's shopping list")
    shopping.add_argument("plan_id", type=int)
    shopping.add_argument("--no-ai", action="store_true", help="Count ingredients without a provider")

    return parser


def load_config(args: argparse.Namespace) -> ExtractionConfig:
    """Load configuration and apply command-line overrides."""
    config = ExtractionConfig.load(config_path=args.config)
    if args.database:
        config.update(database_url=args.database)
    if args.command == "process":
        if args.delay is not None:
            config.update(delay_between_chunks=args.delay)
        if args.no_check_duplicates:
            config.update(check_duplicates=False)
        if args.debug:
            config.update(debug_mode=True)
    return config


def display_error(title: str, message: str) -> None:
    """Display an error panel."""
    console.print()
    console.print(
        Panel(
            message,
            title=f"[bold red]{title}[/bold red]",
            border_style="red",
        )
    )
    console.print()


def display_summary(summary: RunSummary, elapsed_time: float) -> None:
    """Display the completion summary table."""
    minutes = int(elapsed_time // 60)
    seconds = int(elapsed_time % 60)
    time_formatted = f"{minutes}m {seconds}s" if minutes > 0 else f"{seconds}s"

    title = "[bold green]✓ Processing Complete[/bold green]"
    if summary.cancelled:
        title = "[bold yellow]Processing Cancelled[/bold yellow]"
    elif summary.errors:
        title = "[bold yellow]Processing Complete With Errors[/bold yellow]"

    console.print()
    summary_table = Table(title=title, show_header=True, header_style="bold cyan")
    summary_table.add_column("Metric", style="cyan", width=22)
    summary_table.add_column("Value", style="green", justify="right")

    summary_table.add_row("Files Processed", str(summary.files_processed))
    summary_table.add_row("Files Skipped", str(summary.files_skipped))
    summary_table.add_row("Chunks Attempted", str(summary.chunks_attempted))
    summary_table.add_row("Recipes Extracted", str(summary.recipes_extracted))
    summary_table.add_row("Recipes Saved", str(summary.recipes_saved))
    summary_table.add_row("Duplicates Skipped", str(summary.duplicates_skipped))
    summary_table.add_row("Errors", str(summary.errors))
    summary_table.add_row("Processing Time", time_formatted)

    console.print(summary_table)
    console.print()


async def run_process(args: argparse.Namespace, factory: ServiceFactory) -> int:
    """Run extraction over the requested files."""
    if args.paths:
        paths = [Path(p) for p in args.paths]
    else:
        paths = factory.discover_sources(Path(args.dir) if args.dir else None)
    if not paths:
        console.print("[yellow]No PDF files to process[/yellow]")
        return 0

    with create_progress() as progress:
        task = progress.add_task("Starting...", total=None)

        def on_progress(stage: str, current: int, total: int) -> None:
            name = processor.status.current_file or ""
            progress.update(task, description=f"{name} - {stage}", completed=current, total=total)

        processor = factory.create_processor(progress_callback=on_progress)
        provider = processor.provider
        console.print(
            Panel.fit(
                f"[bold cyan]{len(paths)} PDF files[/bold cyan]\n"
                f"[dim]Provider: {provider.name} ({provider.model}), "
                f"{'whole PDF' if provider.supports_direct_pdf else f'{provider.max_pages_per_chunk} pages per chunk'}[/dim]",
                title="[bold]Diet Plan Recipe Parser[/bold]",
                border_style="cyan",
            )
        )
        start_time = time.time()
        try:
            summary = await processor.run(paths)
        except asyncio.CancelledError:
            processor.cancel()
            raise

    display_summary(summary, time.time() - start_time)
    if processor.status.last_error:
        console.print(f"[dim]Last error: {processor.status.last_error}[/dim]")
    return 1 if summary.errors else 0


def run_providers(args: argparse.Namespace, factory: ServiceFactory) -> int:
    registry = factory.providers
    if args.provider_command == "add":
        config = registry.add(
            AIProviderConfig(
                name=args.name,
                model=args.model,
                api_key=args.api_key,
                is_active=args.activate,
                priority=args.priority,
                max_pages_per_chunk=args.max_pages,
                supports_direct_pdf=args.direct_pdf,
            )
        )
        console.print(f"[green]✓[/green] Added provider {config.id}: {config.name} ({config.model})")
        return 0
    if args.provider_command == "activate":
        config = registry.activate(args.provider_id)
        console.print(f"[green]✓[/green] Active provider: {config.name} ({config.model})")
        return 0

    table = Table(title="AI Providers", header_style="bold cyan")
    for column in ("ID", "Name", "Model", "Active", "Priority", "Pages/Chunk", "Direct PDF"):
        table.add_column(column)
    for config in registry.list_providers():
        table.add_row(
            str(config.id),
            config.name,
            config.model,
            "✓" if config.is_active else "",
            str(config.priority),
            str(config.max_pages_per_chunk),
            "✓" if config.supports_direct_pdf else "",
        )
    console.print(table)
    return 0


def run_ledger(args: argparse.Namespace, factory: ServiceFactory) -> int:
    ledger = factory.create_ledger()
    if args.ledger_command == "forget":
        if ledger.forget(args.filename):
            console.print(f"[green]✓[/green] {args.filename} will be processed again")
            return 0
        console.print(f"[yellow]{args.filename} is not in the ledger[/yellow]")
        return 1

    table = Table(title="Processed Files", header_style="bold cyan")
    for column in ("File", "Recipes", "Size", "Processed", "Checksum"):
        table.add_column(column)
    for row in ledger.records():
        table.add_row(
            row.filename,
            str(row.recipes_extracted),
            f"{row.size_bytes / 1024:.0f} KB",
            f"{row.processed_at:%Y-%m-%d %H:%M}",
            row.checksum[:12],
        )
    console.print(table)
    return 0


def run_recipes(args: argparse.Namespace, factory: ServiceFactory) -> int:
    repository = factory.create_repository()
    meal_type = MealType(args.meal_type) if args.meal_type else None
    table = Table(title="Recipes", header_style="bold cyan")
    for column in ("Name", "Meal", "kcal", "P", "C", "F", "Source"):
        table.add_column(column)
    for recipe in repository.list_by_meal_type(meal_type):
        table.add_row(
            recipe.name,
            recipe.meal_type.value,
            str(recipe.calories),
            f"{recipe.protein:g}",
            f"{recipe.carbohydrates:g}",
            f"{recipe.fat:g}",
            recipe.source_file or "",
        )
    console.print(table)
    console.print(f"[dim]{repository.count(meal_type)} recipes[/dim]")
    return 0


def run_plan(args: argparse.Namespace, factory: ServiceFactory) -> int:
    if args.plan_command == "create":
        service = factory.create_meal_plan_service()
        plan = service.create_plan(args.name, args.start, args.days)
        console.print(
            f"[green]✓[/green] Created plan {plan.id}: {plan.name} "
            f"({plan.start_date} - {plan.end_date})"
        )
        return 0
    if args.plan_command == "auto":
        service = factory.create_meal_plan_service(seed=args.seed)
        result = service.auto_generate(
            args.plan_id,
            categories=args.categories,
            per_day=args.per_day,
            use_calorie_target=args.calorie_target is not None,
            target_calories=args.calorie_target or 1800,
            calorie_margin=args.margin,
        )
        console.print(f"[green]✓[/green] Added {result.added_count} entries")
        for warning in result.warnings:
            console.print(f"[yellow]⚠ {warning}[/yellow]")
        return 0
    if args.plan_command == "delete":
        service = factory.create_meal_plan_service()
        if service.delete_plan(args.plan_id):
            console.print(f"[green]✓[/green] Deleted plan {args.plan_id}")
            return 0
        console.print(f"[yellow]Plan {args.plan_id} not found[/yellow]")
        return 1
    if args.plan_command == "update":
        plan = factory.create_meal_plan_service().update_plan(
            args.plan_id,
            name=args.name,
            start_date=args.start,
            end_date=args.end,
            is_active=args.is_active,
        )
        status = "active" if plan.is_active else "inactive"
        console.print(
            f"[green]✓[/green] Updated plan {plan.id}: {plan.name} "
            f"({plan.start_date} - {plan.end_date}, {status})"
        )
        return 0
    if args.plan_command == "move":
        if factory.create_meal_plan_service().update_entry_order(args.entry_id, args.position):
            console.print(f"[green]✓[/green] Moved entry {args.entry_id}")
            return 0
        console.print(f"[yellow]Entry {args.entry_id} not found[/yellow]")
        return 1
    if args.plan_command == "add-person":
        person = factory.create_meal_plan_service().add_person(
            args.plan_id, args.name, args.calories
        )
        console.print(
            f"[green]✓[/green] Added person {person.id}: {person.name} "
            f"({person.target_calories} kcal)"
        )
        return 0
    if args.plan_command == "update-person":
        person = factory.create_meal_plan_service().update_person(
            args.person_id, name=args.name, target_calories=args.calories
        )
        console.print(
            f"[green]✓[/green] Updated person {person.id}: {person.name} "
            f"({person.target_calories} kcal)"
        )
        return 0
    if args.plan_command == "remove-person":
        if factory.create_meal_plan_service().remove_person(args.person_id):
            console.print(f"[green]✓[/green] Removed person {args.person_id}")
            return 0
        console.print(f"[yellow]Person {args.person_id} not found[/yellow]")
        return 1

    plan = factory.create_meal_plan_service().get_plan(args.plan_id)
    if plan is None:
        console.print(f"[yellow]Plan {args.plan_id} not found[/yellow]")
        return 1
    table = Table(title=plan.name, header_style="bold cyan")
    for column in ("Day", "#", "Meal", "Recipe", "kcal"):
        table.add_column(column)
    for day in plan.days:
        label = f"{day.date:%a %d.%m}"
        if not day.entries:
            table.add_row(label, "", "", "[dim]empty[/dim]", "")
        for entry in day.entries:
            table.add_row(
                label,
                str(entry.id),
                entry.meal_type.value,
                entry.recipe.name,
                str(entry.recipe.calories),
            )
            label = ""
    console.print(table)
    if plan.persons:
        people = ", ".join(f"{p.name} ({p.target_calories} kcal)" for p in plan.persons)
        console.print(f"[dim]Persons: {people}[/dim]")
    return 0


async def run_scale(args: argparse.Namespace, factory: ServiceFactory) -> int:
    service = factory.create_scaling_service(use_provider=not args.no_ai)
    with create_progress() as progress:
        progress.add_task("Scaling recipe", total=None)
        scaled = await service.scale_entry(args.entry_id)

    table = Table(title=f"Portions - entry {args.entry_id}", header_style="bold cyan")
    for column in ("Person", "Factor", "kcal", "Protein", "Carbs", "Fat", "Ingredients"):
        table.add_column(column)
    for item in scaled:
        table.add_row(
            item.person.name,
            f"{item.scaling_factor:.2f}",
            str(item.scaled_calories),
            f"{item.scaled_protein:g}",
            f"{item.scaled_carbohydrates:g}",
            f"{item.scaled_fat:g}",
            "\n".join(item.scaled_ingredients),
        )
    console.print(table)
    return 0


async def run_shopping_list(args: argparse.Namespace, factory: ServiceFactory) -> int:
    service = factory.create_shopping_list_service(use_provider=not args.no_ai)
    with create_progress() as progress:
        progress.add_task("Building shopping list", total=None)
        shopping_list = await service.generate(args.plan_id)

    table = Table(title=f"Shopping List - plan {args.plan_id}", header_style="bold cyan")
    for column in ("Category", "Item", "Quantity"):
        table.add_column(column)
    for item in sorted(shopping_list.items, key=lambda i: (i.category, i.name)):
        table.add_row(item.category, item.name, item.quantity)
    console.print(table)
    return 0


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Parse arguments and dispatch to the requested command.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args)
    except InvalidConfiguration as e:
        display_error("Configuration Error", str(e))
        return 2

    factory = ServiceFactory(config=config)
    logging.info(f"Command: {args.command} (database {config.database_url})")
    try:
        if args.command == "process":
            return await run_process(args, factory)
        if args.command == "providers":
            return run_providers(args, factory)
        if args.command == "ledger":
            return run_ledger(args, factory)
        if args.command == "recipes":
            return run_recipes(args, factory)
        if args.command == "plan":
            if args.plan_command == "scale":
                return await run_scale(args, factory)
            return run_plan(args, factory)
        return await run_shopping_list(args, factory)
    except InvalidConfiguration as e:
        display_error("Configuration Error", str(e))
        return 2
    except DietParserError as e:
        display_error("Error", str(e))
        return 1


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for diet-parse CLI command.

    This function serves as the synchronous entry point that launches the async
    main function. It's called when running 'diet-parse' from the command line.
    """
    try:
        exit_code = asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        console.print()
        console.print(
            Panel(
                "[yellow]Processing interrupted by user[/yellow]\n\n"
                "[dim]Finished files are recorded; the next run resumes with the rest.[/dim]",
                title="[bold yellow]Interrupted[/bold yellow]",
                border_style="yellow",
            )
        )
        console.print()
        raise SystemExit(130) from None
    except Exception as e:  # Intentional catch-all for CLI entry point
        console.print()
        console.print(
            Panel(
                f"[bold red]An unexpected error occurred:[/bold red]\n\n"
                f"{e!s}\n\n"
                f"[dim]Check diet_parser.log for detailed error information.[/dim]",
                title="[bold red]Error[/bold red]",
                border_style="red",
            )
        )
        console.print()
        logging.exception("Unexpected error during processing")
        raise
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
