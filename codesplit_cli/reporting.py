"""Rich console rendering of pipeline, reconciliation and coverage reports."""

from __future__ import annotations

from pathlib import Path
from typing import List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import config
from .models import FormatResult, PassReport, PipelineReport, ReconcileReport, TypeCheckResult, TypeCoverage

console = Console()


def _coverage_bar(percentage: float) -> str:
    """Render a simple text progress bar."""
    filled = int(percentage / 10)
    bar = "█" * filled + "░" * (10 - filled)
    if percentage >= 80:
        color = "green"
    elif percentage >= 60:
        color = "yellow"
    else:
        color = "red"
    return f"[{color}]{bar}[/{color}] {percentage:.0f}%"


def print_pass(report: PassReport) -> None:
    if report.skipped:
        console.print(f"\n[yellow]⏭️  {report.name} pass skipped[/yellow]")
        return
    if not report.results:
        console.print(f"\n[dim]⏭️  {report.name} pass: nothing to extract[/dim]")
        return

    console.print(f"\n[bold cyan]🔄 {report.name} pass[/bold cyan]")
    for result in report.results:
        if result.is_applied:
            console.print(f"  [green]✓[/green] {result.name} {result.detail}")
        else:
            console.print(f"  [yellow]•[/yellow] {result.name} [dim]kept: {result.reason}[/dim]")
    for warning in report.warnings:
        console.print(f"  [yellow]⚠️  {warning}[/yellow]")


def print_reconciliation(report: ReconcileReport, verbose: bool = False) -> None:
    name = report.path.name
    if not report.results:
        console.print(f"  [dim]{name}: no annotation gaps[/dim]")
        return
    console.print(f"  [bold]{name}[/bold]: {report.written} written, {len(report.skipped)} skipped")
    for result in report.results:
        if result.is_applied:
            console.print(f"    [green]✓[/green] {result.name} {result.detail}")
        elif verbose:
            console.print(f"    [dim]• {result.name}: {result.reason}[/dim]")


def print_formatting(results: List[FormatResult]) -> None:
    for result in results:
        if not result.success:
            console.print(f"  [yellow]⚠️  format {result.path}: {result.message}[/yellow]")


def print_type_checks(results: List[TypeCheckResult]) -> None:
    """Remaining type errors per file, the first few in full."""
    for result in results:
        name = Path(result.path).name
        if not result.success:
            console.print(f"  [yellow]⚠️  type check {name}: {escape(result.message)}[/yellow]")
        elif result.is_clean:
            console.print(f"  [green]✅ {name}: no type errors found[/green]")
        else:
            console.print(f"  [yellow]⚠️  {name}: {len(result.diagnostics)} type issue(s)[/yellow]")
            for line in result.preview(config.MAX_REPORTED_DIAGNOSTICS):
                console.print(f"    {line}", markup=False, highlight=False)


def print_summary(report: PipelineReport) -> None:
    """Final per-file counts."""
    table = Table(title="\nSummary", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Extracted", justify="right")
    table.add_column("Annotations", justify="right")

    for path, counts in report.summary().items():
        table.add_row(path, str(counts["extracted"]), str(counts["annotations"]))
    console.print(table)

    console.print(
        Panel.fit(
            f"[bold]{report.extracted_count}[/bold] declaration(s) extracted, "
            f"[bold]{report.annotations_written}[/bold] annotation(s) written",
            border_style="green" if report.extracted_count or report.annotations_written else "dim",
        )
    )


def print_pipeline(report: PipelineReport, verbose: bool = False) -> None:
    for pass_report in report.passes:
        print_pass(pass_report)
    if report.reconciliations:
        console.print("\n[bold cyan]🧩 Type reconciliation[/bold cyan]")
        for recon in report.reconciliations:
            print_reconciliation(recon, verbose)
    if report.type_checks:
        console.print("\n[bold cyan]📊 Type analysis[/bold cyan]")
        print_type_checks(report.type_checks)
    print_formatting(report.formatting)
    print_summary(report)


def print_coverage(coverages: List[TypeCoverage]) -> None:
    table = Table(title="Type Coverage", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Typed", justify="right")
    table.add_column("Untyped", justify="right")
    table.add_column("Any", justify="right")
    table.add_column("Coverage")

    for cov in coverages:
        table.add_row(cov.path, str(cov.typed), str(cov.untyped), str(cov.any_count), _coverage_bar(cov.percentage))
    console.print(table)
