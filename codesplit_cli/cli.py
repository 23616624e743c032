"""Typer-based CLI for codesplit."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.logging import RichHandler

from . import __version__, config
from .classifier import candidate_report
from .config_manager import build_options, load_full_config, load_user_settings, parse_setting, save_setting
from .diff_engine import DiffEngine
from .errors import CodesplitError, ModuleLoadError, PersistenceError
from .formatter import ExternalFormatter
from .pipeline import SplitPipeline
from .reconciler import TypeReconciler
from .reporting import console, print_coverage, print_pipeline, print_reconciliation, print_type_checks
from .type_checker import TypeChecker
from .validation_engine import ValidationEngine
from .workspace import Workspace

app = typer.Typer(
    help="✂️  codesplit: split oversized Python modules into cohesive files.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="⚙️  Show or change stored settings")
app.add_typer(config_app, name="config")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"codesplit v{__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=False)],
        force=True,
    )


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log every step."),
):
    """codesplit: extract types, utilities and nested helpers, then reconcile annotations."""
    _configure_logging(verbose)


@app.command("split")
def split(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Module to split."),
    types_path: Optional[Path] = typer.Option(None, "--types", help="Types module (default <stem>_types.py)."),
    utils_path: Optional[Path] = typer.Option(None, "--utils", help="Utilities module (default <stem>_utils.py)."),
    min_function_lines: Optional[int] = typer.Option(None, "--min-function-lines", min=0),
    min_variable_lines: Optional[int] = typer.Option(None, "--min-variable-lines", min=0),
    helper_pattern: Optional[str] = typer.Option(None, "--helper-pattern", help="Regex for nested helper names."),
    composite: Optional[str] = typer.Option(None, "--composite", "-c", help="Function whose nested helpers are extracted."),
    type_text_limit: Optional[int] = typer.Option(None, "--type-limit", min=1, help="Max inferred annotation length."),
    import_style: Optional[str] = typer.Option(None, "--import-style", help="relative or absolute"),
    nested: Optional[bool] = typer.Option(None, "--nested/--no-nested", help="Run the nested helper pass."),
    reconcile: Optional[bool] = typer.Option(None, "--reconcile/--no-reconcile", help="Write inferred annotations."),
    run_format: Optional[bool] = typer.Option(None, "--format/--no-format", help="Run the external formatter."),
    type_check: Optional[bool] = typer.Option(None, "--type-check/--no-type-check", help="Report type errors left after the split."),
    backup: Optional[bool] = typer.Option(None, "--backup/--no-backup", help="Back up files before writing."),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show diffs without writing."),
    verbose: bool = typer.Option(False, "--details", help="List skipped annotations too."),
):
    """🔪 Split FILE into types, utilities and a slimmer origin.

    Example:
      codesplit split app/dashboard.py --composite render_dashboard --dry-run
    """
    options = build_options(file, {
        "types_path": types_path,
        "utils_path": utils_path,
        "min_function_lines": min_function_lines,
        "min_variable_lines": min_variable_lines,
        "helper_pattern": helper_pattern,
        "composite": composite,
        "type_text_limit": type_text_limit,
        "import_style": import_style,
        "nested": nested,
        "reconcile": reconcile,
        "format": run_format,
        "type_check": type_check,
        "backup": backup,
        "dry_run": dry_run,
    })

    console.print(f"[bold cyan]🚀 Splitting {options.origin.name}[/bold cyan]")
    pipeline = SplitPipeline(options)
    try:
        report = pipeline.run()
    except PersistenceError as e:
        console.print(f"[red]❌ {e}[/red]")
        console.print("[red]Nothing was removed from the origin for the failed pass.[/red]")
        raise typer.Exit(code=1)

    print_pipeline(report, verbose=verbose)

    if dry_run:
        typer.echo("")
        typer.echo(pipeline.diff_engine.preview_changes(report.changes))
        console.print("[yellow]Dry run: no files were written.[/yellow]")
    elif report.backup_id:
        typer.echo(f"💾 Backup created: {report.backup_id}")
        typer.echo(f"   Rollback with: codesplit rollback {report.backup_id}")


@app.command("analyze")
def analyze(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Module to inspect."),
    min_function_lines: Optional[int] = typer.Option(None, "--min-function-lines", min=0),
    min_variable_lines: Optional[int] = typer.Option(None, "--min-variable-lines", min=0),
    helper_pattern: Optional[str] = typer.Option(None, "--helper-pattern"),
    composite: Optional[str] = typer.Option(None, "--composite", "-c"),
):
    """📋 Show extraction candidates without changing anything."""
    options = build_options(file, {
        "min_function_lines": min_function_lines,
        "min_variable_lines": min_variable_lines,
        "helper_pattern": helper_pattern,
        "composite": composite,
        "dry_run": True,
    })
    try:
        candidates = SplitPipeline(options).analyze()
    except ModuleLoadError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1)

    typer.echo(candidate_report(candidates))
    for candidate in candidates:
        for warning in candidate.warnings:
            console.print(f"[yellow]⚠️  {candidate.name}: {warning}[/yellow]")


def _is_types_module(path: Path) -> bool:
    return path.stem.endswith(config.TYPES_SUFFIX)


@app.command("types")
def reconcile_types(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Modules to annotate."),
    type_text_limit: int = typer.Option(config.DEFAULT_TYPE_TEXT_LIMIT, "--type-limit", min=1),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show diffs without writing."),
    verbose: bool = typer.Option(False, "--details", help="List skipped annotations too."),
    check: bool = typer.Option(False, "--check", help="Report type errors left after annotating."),
):
    """🧩 Infer and write missing type annotations."""
    workspace = Workspace(dry_run=dry_run)
    reconciler = TypeReconciler(workspace, type_text_limit=type_text_limit)
    failed = False

    for path in files:
        try:
            module = workspace.load(path)
            report = reconciler.reconcile(module, is_types_module=_is_types_module(path))
        except (ModuleLoadError, PersistenceError) as e:
            console.print(f"[red]❌ {e}[/red]")
            failed = True
            continue
        print_reconciliation(report, verbose)

    if dry_run and workspace.changes:
        typer.echo(workspace.diff_engine.preview_changes(workspace.changes))
    elif not dry_run:
        validator = ValidationEngine()
        print_coverage([validator.type_coverage(p) for p in files if not validator.check_file(p)])
        if check:
            checker = TypeChecker(load_user_settings().get("type_check_command"))
            console.print("\n[bold cyan]📊 Type analysis[/bold cyan]")
            print_type_checks(checker.check_paths(files))
    if failed:
        raise typer.Exit(code=1)


@app.command("format")
def format_files(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Files to format."),
):
    """🎨 Run the configured formatter commands on FILES."""
    settings = load_full_config().get("format", {})
    commands = settings.get("commands") if isinstance(settings.get("commands"), list) else None
    results = ExternalFormatter(commands).format_paths(files)
    for result in results:
        if result.success:
            console.print(f"[green]✓[/green] {result.path}")
        else:
            console.print(f"[yellow]⚠️  {result.path}: {result.message}[/yellow]")


@app.command("coverage")
def coverage(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Files to measure."),
):
    """📊 Show annotation coverage of module-level declarations."""
    validator = ValidationEngine()
    errors = validator.diagnose_files(files)
    for error in errors:
        console.print(f"[red]✗[/red] {error['file']}:{error['line']} {error['error']}")
    broken = {e["file"] for e in errors}
    print_coverage([validator.type_coverage(p) for p in files if str(p) not in broken])
    if errors:
        raise typer.Exit(code=1)


@app.command("backups")
def list_backups():
    """📦 List all available backups."""
    backups = DiffEngine().list_backups()
    if not backups:
        typer.echo("No backups found")
        return

    typer.echo(f"📦 Found {len(backups)} backup(s):\n")
    for backup in backups:
        typer.echo(f"ID: {backup['backup_id']}")
        typer.echo(f"   Description: {backup['description']}")
        typer.echo(f"   Timestamp: {backup['timestamp']}")
        typer.echo(f"   Files: {len(backup['files'])}")
        typer.echo("")


@app.command("rollback")
def rollback(backup_id: str = typer.Argument(..., help="Backup ID to restore.")):
    """⏪ Restore the files saved in a backup."""
    typer.echo(f"🔄 Rolling back to backup: {backup_id}")
    if DiffEngine().rollback(backup_id):
        typer.echo("✅ Rollback successful")
    else:
        typer.echo(f"❌ Failed to rollback - backup not found: {backup_id}")
        raise typer.Exit(code=1)


@config_app.command("show")
def show_config():
    """Print the stored user settings."""
    data = load_full_config()
    if not data:
        typer.echo(f"No settings stored in {config.CONFIG_FILE}")
        return
    for section, values in data.items():
        typer.echo(f"[{section}]")
        if isinstance(values, dict):
            for key, value in values.items():
                typer.echo(f"  {key} = {value!r}")


@config_app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Setting name, e.g. min_function_lines"),
    value: str = typer.Argument(..., help="New value"),
):
    """Store one [split] setting in the user config file."""
    try:
        parsed = parse_setting(key, value)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    if not save_setting(key, parsed):
        console.print(f"[red]❌ Could not save {key}[/red]")
        raise typer.Exit(code=1)
    typer.echo(f"Saved {key} = {parsed!r}")


def run() -> None:
    """Console-script entry point."""
    try:
        app()
    except CodesplitError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise SystemExit(1)
