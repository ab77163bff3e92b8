"""
captionline.reports - Run summaries and the processed-items report.

The run summary is printed after ``captionline run``. The processed-items
report scans the output directory for every catalog item and records which
languages have a verified artifact, as a rich table plus JSON and CSV files.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from captionline.io import write_json, write_text
from captionline.language import language_name
from captionline.models import Item, RunResult
from captionline.stages.verify import VerificationGate
from captionline.utils import format_duration, truncate
from captionline.workspace import Workspace


@dataclass
class ItemStatus:
    item: Item
    valid: dict[str, bool] = field(default_factory=dict)

    @property
    def missing(self) -> list[str]:
        return [lang for lang, ok in self.valid.items() if not ok]

    @property
    def completion(self) -> int:
        if not self.valid:
            return 0
        return round(100 * sum(self.valid.values()) / len(self.valid))

    @property
    def fully_processed(self) -> bool:
        return bool(self.valid) and all(self.valid.values())


def render_run_summary(result: RunResult, console: Console) -> None:
    """Print succeeded, skipped and failed items with failure reasons."""
    table = Table(title="Run Summary")
    table.add_column("Item", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Details", style="dim")

    for outcome in result.succeeded:
        label = truncate(outcome.item.title or outcome.item.id, 50)
        if outcome.status == "skipped":
            table.add_row(label, "[dim]Skipped (verified)[/dim]", "-", "")
        else:
            details = ", ".join(outcome.languages)
            if outcome.uploaded:
                details += f" (uploaded {len(outcome.uploaded)})"
            table.add_row(label, "[green]✓ Completed[/green]", str(outcome.attempts), details)

    for failure in result.failed:
        label = truncate(failure.item.title or failure.item.id, 50)
        table.add_row(
            label,
            "[red]✗ Failed[/red]",
            str(failure.attempts or "-"),
            truncate(failure.reason, 80),
        )

    console.print(table)
    console.print(
        f"\n[green]✓[/green] Completed {len(result.completed)}, "
        f"skipped {len(result.skipped)}, failed {len(result.failed)} "
        f"in {format_duration(result.elapsed_seconds)} "
        f"(peak {result.peak_in_flight} in flight)"
    )


def collect_statuses(
    items: list[Item],
    languages: list[str],
    workspace: Workspace,
    gate: VerificationGate,
) -> list[ItemStatus]:
    """Check each item's artifact for every language against the gate."""
    statuses = []
    for item in items:
        status = ItemStatus(item=item)
        for language in languages:
            artifact = gate.inspect(workspace.artifact_path(item, language), language)
            status.valid[language] = artifact.is_valid
        statuses.append(status)
    return statuses


def build_processed_report(statuses: list[ItemStatus], languages: list[str]) -> dict[str, Any]:
    total = len(statuses)

    def percent(count: int) -> int:
        return round(100 * count / total) if total else 0

    breakdown = {}
    for language in languages:
        done = sum(1 for s in statuses if s.valid.get(language))
        breakdown[language] = {"processed": done, "total": total, "percentage": percent(done)}

    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "total_items": total,
        "summary": {
            "fully_processed": sum(1 for s in statuses if s.fully_processed),
            "partially_processed": sum(
                1 for s in statuses if 0 < s.completion < 100
            ),
            "not_processed": sum(1 for s in statuses if s.completion == 0),
        },
        "languages": breakdown,
        "items": [
            {
                "id": s.item.id,
                "title": s.item.title,
                "slug": s.item.slug,
                "created_at": s.item.created_at,
                "completion": s.completion,
                "fully_processed": s.fully_processed,
                "languages": s.valid,
                "missing": s.missing,
            }
            for s in statuses
        ],
    }


def report_csv(statuses: list[ItemStatus], languages: list[str]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(
        ["id", "title", "slug", "created_at", "completion", "fully_processed"]
        + [language_name(lang) for lang in languages]
        + ["missing"]
    )
    for s in statuses:
        writer.writerow(
            [
                s.item.id,
                s.item.title,
                s.item.slug,
                s.item.created_at.isoformat() if s.item.created_at else "",
                s.completion,
                "yes" if s.fully_processed else "no",
            ]
            + ["yes" if s.valid.get(lang) else "no" for lang in languages]
            + [", ".join(s.missing)]
        )
    return buffer.getvalue()


def write_processed_report(
    statuses: list[ItemStatus], languages: list[str], directory: Path
) -> tuple[Path, Path]:
    """Write JSON and CSV versions of the report; return their paths."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    json_path = directory / f"processed-items-{stamp}.json"
    csv_path = directory / f"processed-items-{stamp}.csv"
    write_json(json_path, build_processed_report(statuses, languages))
    write_text(csv_path, report_csv(statuses, languages))
    return json_path, csv_path


def render_processed_report(
    statuses: list[ItemStatus], languages: list[str], console: Console, limit: int = 20
) -> None:
    """Print the language breakdown and the items that still need work."""
    report = build_processed_report(statuses, languages)
    summary = report["summary"]
    console.print(
        f"[green]Fully processed:[/green] {summary['fully_processed']}  "
        f"[yellow]Partial:[/yellow] {summary['partially_processed']}  "
        f"[red]Not processed:[/red] {summary['not_processed']}  "
        f"of {report['total_items']}"
    )

    breakdown = Table(title="Languages")
    breakdown.add_column("Language", style="cyan")
    breakdown.add_column("Verified", justify="right")
    breakdown.add_column("%", justify="right")
    for language, row in report["languages"].items():
        breakdown.add_row(
            language_name(language), f"{row['processed']}/{row['total']}", str(row["percentage"])
        )
    console.print(breakdown)

    pending = [s for s in statuses if not s.fully_processed]
    if not pending:
        return
    table = Table(title=f"Items needing processing ({len(pending)})")
    table.add_column("Item", style="cyan")
    table.add_column("Done", justify="right")
    table.add_column("Missing", style="yellow")
    for status in pending[:limit]:
        table.add_row(
            truncate(status.item.title or status.item.id, 50),
            f"{status.completion}%",
            ", ".join(status.missing),
        )
    console.print(table)
    if len(pending) > limit:
        console.print(f"[dim]... and {len(pending) - limit} more[/dim]")
