"""
captionline.cli - Typer CLI entry point.

Provides all subcommands for the captionline pipeline.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from pathlib import Path
from typing import Any

import httpx
import typer
from rich.console import Console
from rich.table import Table

from captionline import __version__
from captionline.catalog.client import DEFAULT_TIMEOUT, CatalogClient
from captionline.catalog.source import CatalogItemSource, select_items
from captionline.config import (
    BUILTIN_PROFILES,
    CONFIG_FILENAME,
    CaptionlineConfig,
    create_default_config,
    load_config,
    write_config,
)
from captionline.exceptions import CaptionlineError
from captionline.logging import configure_logging
from captionline.models import Item, RunResult
from captionline.workspace import ARTIFACT_SUFFIX, Workspace

app = typer.Typer(
    name="captionline",
    help="Multilingual subtitle pipeline for a video catalog.\n\n"
    "Downloads each catalog item, transcribes its speech, translates the "
    "transcript into every configured language, verifies the results and "
    "optionally publishes them back as captions.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"captionline {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    config_path: Path | None = typer.Option(
        None, "--config", "-c", help=f"Config file (default: ./{CONFIG_FILENAME})"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """captionline - transcribe, translate and publish video captions."""
    configure_logging(verbose)
    ctx.obj = {"config_path": config_path}


def get_config(ctx: typer.Context, **overrides: Any) -> CaptionlineConfig:
    """Load the config for a command, exiting with a message on failure."""
    config_path = (ctx.obj or {}).get("config_path")
    try:
        return load_config(config_path, overrides=overrides)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[dim]Run 'captionline init' to create one[/dim]")
        raise typer.Exit(1) from e
    except CaptionlineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e


def require_api_key(config: CaptionlineConfig) -> None:
    if not config.catalog_api_key:
        console.print("[red]Error: No catalog API key configured[/red]")
        console.print("[dim]Set CAPTIONLINE_API_KEY or catalog_api_key in the config[/dim]")
        raise typer.Exit(1)


# Setup


@app.command("init")
def init_config(
    profile: str = typer.Option(
        "full",
        "--profile",
        "-p",
        help=f"Speed profile: {', '.join(BUILTIN_PROFILES)}",
    ),
    path: str = typer.Option(".", "--path", "-d", help="Directory to write the config in"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
) -> None:
    """Create a captionline.yaml with profile defaults."""
    if profile not in BUILTIN_PROFILES:
        console.print(f"[red]Error: Unknown profile '{profile}'[/red]")
        raise typer.Exit(1)

    config_file = Path(path).resolve() / CONFIG_FILENAME
    if config_file.exists() and not force:
        console.print(f"[red]Error: {config_file} already exists[/red] (use --force)")
        raise typer.Exit(1)

    write_config(create_default_config(profile), config_file)
    console.print(f"[green]✓[/green] Wrote {CONFIG_FILENAME} with profile '{profile}'")
    console.print(f"[dim]  {config_file}[/dim]")
    console.print("\nNext steps:")
    console.print("  export CAPTIONLINE_API_KEY=...")
    console.print("  captionline check")
    console.print("  captionline run")


# Pipeline


async def _list_items(config: CaptionlineConfig) -> list[Item]:
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, follow_redirects=True) as http:
        catalog = CatalogClient.from_config(config, http_client=http)
        return select_items(
            await CatalogItemSource(catalog).fetch_items(),
            last_n_days=config.last_n_days,
            max_items=config.max_items,
        )


async def _run_pipeline(config: CaptionlineConfig) -> RunResult:
    from captionline.llm.client import create_client_from_config
    from captionline.pipeline import PipelineRunner, ProgressReporter, build_processor

    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, follow_redirects=True) as http:
        catalog = CatalogClient.from_config(config, http_client=http)
        llm = create_client_from_config(config)
        model = await llm.initialize()
        console.print(f"[dim]Translation model: {model}[/dim]")

        processor = build_processor(config, http, service=llm, catalog=catalog)
        reporter = ProgressReporter(0, config.progress_interval, console=console)
        runner = PipelineRunner(processor, workers=config.workers, reporter=reporter)
        result = await runner.run_source(
            CatalogItemSource(catalog),
            last_n_days=config.last_n_days,
            max_items=config.max_items,
        )

        usage = llm.get_token_usage()
        if usage["total_tokens"]:
            console.print(f"[dim]Tokens used: {usage['total_tokens']:,}[/dim]")
        return result


@app.command("run")
def run(
    ctx: typer.Context,
    profile: str | None = typer.Option(None, "--profile", "-p", help="Speed profile"),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Concurrent items (K)"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Process at most N items"),
    days: int | None = typer.Option(None, "--days", help="Only items from the last N days"),
    upload: bool | None = typer.Option(
        None, "--upload/--no-upload", help="Publish verified captions to the catalog"
    ),
    lenient: bool = typer.Option(
        False, "--lenient", help="Pad short translation batches instead of failing"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="List the selected items and exit"),
) -> None:
    """Process catalog items end to end."""
    config = get_config(
        ctx,
        profile=profile,
        workers=workers,
        max_items=limit,
        last_n_days=days,
        upload_captions=upload,
        strict_translation=False if lenient else None,
    )
    require_api_key(config)

    console.print(
        f"[cyan]Profile '{config.profile}': {config.workers} worker(s), "
        f"languages {', '.join(config.languages)}[/cyan]\n"
    )

    try:
        if dry_run:
            items = asyncio.run(_list_items(config))
        else:
            result = asyncio.run(_run_pipeline(config))
    except CaptionlineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    if dry_run:
        if not items:
            console.print("[yellow]No items selected.[/yellow]")
            raise typer.Exit(0)
        table = Table(title=f"Selected items ({len(items)})")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Created", style="dim")
        for item in items:
            created = item.created_at.date().isoformat() if item.created_at else "-"
            table.add_row(item.id, item.title, created)
        console.print(table)
        return

    if not result.total:
        console.print("[yellow]No items selected.[/yellow]")
        raise typer.Exit(0)

    from captionline.reports import render_run_summary

    render_run_summary(result, console)
    if result.failed:
        raise typer.Exit(1)


@app.command("transcribe")
def transcribe(
    ctx: typer.Context,
    audio_files: list[Path] = typer.Argument(..., help="WAV file(s) to transcribe"),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Where to write VTT files (default: beside each file)"
    ),
) -> None:
    """Batch-transcribe local audio files with the speech-to-text engine."""
    from captionline.stages.transcribe import Transcriber, TranscriptionJob

    config = get_config(ctx)
    transcriber = Transcriber(
        config.whisper_bin,
        config.whisper_model,
        language=config.whisper_language,
        timeout=config.transcription_timeout,
        batch_size=config.transcription_batch_size,
    )

    jobs = []
    for audio in audio_files:
        target_dir = output_dir or audio.parent
        target_dir.mkdir(parents=True, exist_ok=True)
        jobs.append(TranscriptionJob(audio_path=audio, output_base=target_dir / audio.stem))

    console.print(f"[cyan]Transcribing {len(jobs)} file(s)...[/cyan]\n")
    results = asyncio.run(transcriber.transcribe_many(jobs))

    table = Table(title="Transcription")
    table.add_column("Audio", style="cyan")
    table.add_column("Status")
    table.add_column("Output", style="dim")
    for res in results:
        if res.success:
            table.add_row(
                res.job.audio_path.name, "[green]✓ Transcribed[/green]", str(res.vtt_path)
            )
        else:
            table.add_row(res.job.audio_path.name, "[red]✗ Failed[/red]", res.error or "")
    console.print(table)

    failed = sum(1 for r in results if not r.success)
    console.print(f"\n[green]✓[/green] Transcribed {len(results) - failed}, failed {failed}")
    if failed:
        raise typer.Exit(1)


# Verification and reports


def find_local_items(output_dir: Path) -> list[Item]:
    """Items inferred from artifact file names in the output directory."""
    slugs: dict[str, set[str]] = defaultdict(set)
    for path in sorted(output_dir.glob(f"*_*{ARTIFACT_SUFFIX}")):
        slug, _, language = path.stem.rpartition("_")
        if slug and 2 <= len(language) <= 3 and language.isalpha():
            slugs[slug].add(language)
    return [Item(id=slug, title=slug) for slug in sorted(slugs)]


@app.command("verify")
def verify(ctx: typer.Context) -> None:
    """Run the verification gate over every local artifact set."""
    from captionline.stages.verify import VerificationGate

    config = get_config(ctx)
    workspace = Workspace(config.output_dir, config.temp_dir)
    if not config.output_dir.exists():
        console.print(f"[yellow]Output directory not found: {config.output_dir}[/yellow]")
        raise typer.Exit(0)

    items = find_local_items(config.output_dir)
    if not items:
        console.print("[yellow]No artifacts found.[/yellow]")
        raise typer.Exit(0)

    gate = VerificationGate(config.verification)
    table = Table(title="Verification")
    table.add_column("Item", style="cyan")
    table.add_column("Status")
    table.add_column("Problems", style="yellow")

    incomplete = 0
    for item in items:
        report = gate.verify_item(item, config.languages, workspace)
        if report.ok:
            table.add_row(item.slug, "[green]✓ Complete[/green]", "")
        else:
            incomplete += 1
            table.add_row(item.slug, "[red]✗ Incomplete[/red]", "; ".join(report.problems))
    console.print(table)

    console.print(f"\n{len(items) - incomplete}/{len(items)} item(s) complete")
    if incomplete:
        raise typer.Exit(1)


@app.command("report")
def report(
    ctx: typer.Context,
    save: bool = typer.Option(True, "--save/--no-save", help="Write JSON and CSV reports"),
    output: Path = typer.Option(Path("."), "--output", "-o", help="Directory for report files"),
) -> None:
    """Report which catalog items have verified captions locally."""
    from captionline.reports import (
        collect_statuses,
        render_processed_report,
        write_processed_report,
    )
    from captionline.stages.verify import VerificationGate

    config = get_config(ctx)
    require_api_key(config)

    async def fetch() -> list[Item]:
        async with CatalogClient.from_config(config) as catalog:
            return await catalog.list_items()

    try:
        items = asyncio.run(fetch())
    except CaptionlineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    workspace = Workspace(config.output_dir, config.temp_dir)
    gate = VerificationGate(config.verification)
    statuses = collect_statuses(items, config.languages, workspace, gate)
    render_processed_report(statuses, config.languages, console)

    if save:
        json_path, csv_path = write_processed_report(statuses, config.languages, output)
        console.print(f"\n[green]✓[/green] JSON report: {json_path}")
        console.print(f"[green]✓[/green] CSV report: {csv_path}")


# Catalog maintenance


@app.command("clear-captions")
def clear_captions(
    ctx: typer.Context,
    item_ids: list[str] | None = typer.Argument(None, help="Item ID(s); omit with --all"),
    all_items: bool = typer.Option(False, "--all", "-a", help="Every item in the catalog"),
    languages: str | None = typer.Option(
        None, "--languages", "-l", help="Comma-separated languages (default: configured)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete published captions from catalog items."""
    from captionline.stages.upload import UploadStage

    config = get_config(ctx)
    require_api_key(config)
    if not item_ids and not all_items:
        console.print("[red]Error: Give item IDs or --all[/red]")
        raise typer.Exit(1)

    langs = config.languages
    if languages:
        langs = [code.strip().lower() for code in languages.split(",")]
    target = "ALL catalog items" if all_items else f"{len(item_ids)} item(s)"
    if not yes:
        typer.confirm(f"Delete {', '.join(langs)} captions from {target}?", abort=True)

    async def clear() -> dict[str, list[str]]:
        async with CatalogClient.from_config(config) as catalog:
            if all_items:
                items = await catalog.list_items()
            else:
                items = [Item(id=item_id, title=item_id) for item_id in item_ids]
            uploader = UploadStage(catalog)
            return {item.id: await uploader.clear(item, langs) for item in items}

    try:
        removed = asyncio.run(clear())
    except CaptionlineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    total = sum(len(v) for v in removed.values())
    console.print(f"[green]✓[/green] Deleted {total} caption(s) from {len(removed)} item(s)")


@app.command("delete-item")
def delete_item(
    ctx: typer.Context,
    item_id: str = typer.Argument(..., help="Catalog item ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete one item from the catalog."""
    config = get_config(ctx)
    require_api_key(config)
    if not yes:
        typer.confirm(f"Permanently delete item {item_id}?", abort=True)

    async def delete() -> None:
        async with CatalogClient.from_config(config) as catalog:
            await catalog.delete_item(item_id)

    try:
        asyncio.run(delete())
    except CaptionlineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e
    console.print(f"[green]✓[/green] Deleted item {item_id}")


@app.command("check")
def check(
    ctx: typer.Context,
    remote: bool = typer.Option(
        True, "--remote/--local", help="Also check catalog auth and translation model"
    ),
) -> None:
    """Check external tools, catalog access and the translation model."""
    from captionline.validation import run_preflight_checks

    config = get_config(ctx)

    table = Table(title="Dependency Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Version/Details")

    results = run_preflight_checks(config)
    checks = results["checks"]
    all_passed = results["passed"]

    ffmpeg = checks["ffmpeg"]
    if "error" in ffmpeg:
        hint = ffmpeg["install_hint"] or ffmpeg["error"]
        table.add_row("FFmpeg", "[red]✗ Missing[/red]", hint)
    else:
        table.add_row("FFmpeg", "✓ Installed", ffmpeg["version"])

    whisper = checks["whisper"]
    if "error" in whisper:
        hint = whisper["install_hint"] or whisper["error"]
        table.add_row(whisper["dependency"], "[red]✗ Missing[/red]", hint)
    else:
        details = f"{whisper['model']} ({whisper['model_mb']} MB)"
        table.add_row("whisper.cpp", "✓ Installed", details)

    disk = checks["disk_space"]
    if "error" in disk:
        table.add_row("Disk space", "?", disk["error"])
    else:
        status = "✓ OK" if disk["sufficient"] else "[red]✗ Low[/red]"
        table.add_row("Disk space", status, f"{disk['available_mb']:,} MB free")

    if remote:
        all_passed = _check_remote(config, table) and all_passed

    console.print(table)

    if all_passed:
        console.print("\n[green]✓ All checks passed[/green]")
    else:
        console.print("\n[yellow]⚠ Some checks failed[/yellow]")
        console.print("[dim]Fix the issues above before running the pipeline[/dim]")
        raise typer.Exit(1)


def _check_remote(config: CaptionlineConfig, table: Table) -> bool:
    from captionline.llm.client import create_client_from_config

    passed = True

    async def authenticate() -> None:
        async with CatalogClient.from_config(config) as catalog:
            await catalog.session.refresh()

    if not config.catalog_api_key:
        table.add_row("Catalog", "[red]✗ No API key[/red]", "Set CAPTIONLINE_API_KEY")
        passed = False
    else:
        try:
            asyncio.run(authenticate())
            table.add_row("Catalog", "✓ Authenticated", config.catalog_base_url)
        except CaptionlineError as e:
            table.add_row("Catalog", "[red]✗ Failed[/red]", str(e))
            passed = False

    try:
        model = asyncio.run(create_client_from_config(config).initialize())
        table.add_row("Translation", "✓ Available", model)
    except CaptionlineError as e:
        table.add_row("Translation", "[red]✗ Unavailable[/red]", str(e))
        passed = False

    return passed


if __name__ == "__main__":
    app()
