import asyncio
from pathlib import Path
from typing import List

import typer

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from templar.config import AdvancedSettings, CheckResult, ScanReport, Template
from templar.errors import BrowserStartError, RequestError, SettingsError, TemplateLoadError
from templar.loader import load_templates
from templar.scaffolder import DEFAULT_TEMPLATE_FILE, scaffold_template
from templar.scanner import check_url, run_scan
from templar.services import ScanServices
from templar.targets import read_targets
from templar.utils import normalize_target, sanitize_url, setup_logging

console = Console()
app = typer.Typer(rich_markup_mode="rich")


def print_banner():
    console.print("\n[bold cyan]templar[/bold cyan] - Template-driven matching engine\n")


def _load_settings(settings_file: Path, **overrides) -> AdvancedSettings:
    try:
        if settings_file:
            return AdvancedSettings.from_yaml(settings_file, **overrides)
        return AdvancedSettings().with_overrides(**overrides)
    except SettingsError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _load_templates(path: Path) -> List[Template]:
    try:
        templates = load_templates(path)
    except TemplateLoadError as e:
        console.print(f"[red]Template path not found: {e.path}[/red]")
        raise typer.Exit(1)

    if not templates:
        console.print("[red]No templates to execute[/red]")
        raise typer.Exit(1)

    console.print(f"[cyan]Loaded {len(templates)} templates[/cyan]")
    return templates


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    )


def _print_stats(report: ScanReport, results_file: str) -> None:
    stats = report.stats
    table = Table(title="Statistics", show_header=False)
    table.add_row("Targets loaded", str(stats.targets_loaded))
    table.add_row("Processed", str(stats.processed))
    table.add_row("Successes", f"[green]{stats.successes}[/green]")
    table.add_row("Errors", f"[red]{stats.errors}[/red]" if stats.errors else "0")
    table.add_row("Avg time (ms)", f"{stats.avg_duration_ms:.0f}")
    table.add_row("Duration (s)", f"{report.duration_seconds:.1f}")
    console.print(table)

    if report.cancelled:
        console.print("[yellow]Scan stopped before every target was processed[/yellow]")
    if report.match_count and results_file:
        console.print(f"[green]{report.match_count} matches appended to {results_file}[/green]")


def _print_check(result: CheckResult) -> None:
    if result.status == "error":
        console.print(f"[red]Check failed: {result.error}[/red]")
        return
    if result.cancelled:
        console.print(f"[yellow]Check cancelled: {result.error}[/yellow]")

    if result.matched:
        table = Table(title=f"Matches for {sanitize_url(result.url)}")
        table.add_column("Template ID", style="cyan")
        table.add_column("Name")
        table.add_column("Severity")
        for match in result.matched:
            table.add_row(match.template_id, match.name, match.severity)
        console.print(table)
    else:
        console.print("[yellow]No templates matched[/yellow]")

    console.print(
        f"[dim]Checked {result.checked}/{result.total} templates "
        f"in {result.duration_seconds:.2f}s[/dim]"
    )
    for error in result.errors:
        console.print(f"[dim red]{error}[/dim red]")


@app.command()
def scan(
    targets_file: Path = typer.Argument(..., help="File with one target per line"),
    templates_dir: Path = typer.Argument(..., help="Template file or directory"),
    settings_file: Path = typer.Option(None, "-s", "--settings", help="YAML file with advanced settings"),
    workers: int = typer.Option(None, "-w", "--workers", help="Templates evaluated at once per target"),
    target_workers: int = typer.Option(None, "-c", "--concurrency", help="Targets scanned at once"),
    timeout: float = typer.Option(None, "-t", "--timeout", help="Deadline per target in seconds"),
    retries: int = typer.Option(None, "--retries", help="Retries for transient HTTP errors"),
    output: str = typer.Option(None, "-o", "--output", help="Results log (default: goods.txt)"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable verbose logging"),
):
    """Scan every target in a file with every template in a directory."""
    setup_logging(verbose=verbose)
    if not verbose:
        print_banner()

    settings = _load_settings(
        settings_file,
        workers=workers,
        target_workers=target_workers,
        timeout=timeout,
        retries=retries,
        results_file=output,
    )
    templates = _load_templates(templates_dir)

    try:
        targets = read_targets(targets_file)
    except OSError as e:
        console.print(f"[red]Cannot read targets file: {e}[/red]")
        raise typer.Exit(1)
    if not targets:
        console.print("[red]No targets to scan[/red]")
        raise typer.Exit(1)

    async def _scan() -> ScanReport:
        async with ScanServices(settings) as services:
            with _progress() as progress:
                task = progress.add_task("Scanning...", total=len(targets))

                def on_progress(report: ScanReport) -> None:
                    progress.update(
                        task,
                        completed=report.stats.processed,
                        description=f"Scanning... [green]{report.stats.successes} hits[/green]",
                    )

                return await run_scan(
                    targets, templates, settings, services, progress_callback=on_progress
                )

    try:
        report = asyncio.run(_scan())
    except KeyboardInterrupt:
        console.print("[yellow]Scan interrupted[/yellow]")
        raise typer.Exit(1)
    except BrowserStartError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    _print_stats(report, settings.results_file)


@app.command()
def check(
    url: str = typer.Argument(..., help="Target URL to check"),
    templates_dir: Path = typer.Argument(..., help="Template file or directory"),
    settings_file: Path = typer.Option(None, "-s", "--settings", help="YAML file with advanced settings"),
    timeout: float = typer.Option(None, "-t", "--timeout", help="Deadline for the whole check in seconds"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable verbose logging"),
):
    """Report which templates match a single URL."""
    setup_logging(verbose=verbose)
    settings = _load_settings(settings_file, timeout=timeout)
    templates = _load_templates(templates_dir)
    target = normalize_target(url)

    async def _check() -> CheckResult:
        async with ScanServices(settings) as services:
            await services.browser.restart()
            with _progress() as progress:
                task = progress.add_task("Checking templates...", total=len(templates))

                def on_progress(completed: int, total: int) -> None:
                    progress.update(task, completed=completed)

                return await check_url(
                    target, templates, settings, services, progress_callback=on_progress
                )

    try:
        result = asyncio.run(_check())
    except KeyboardInterrupt:
        console.print("[yellow]Check interrupted[/yellow]")
        raise typer.Exit(1)
    except BrowserStartError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    _print_check(result)
    raise typer.Exit(0 if result.matched else 1)


@app.command()
def scaffold(
    url: str = typer.Argument(..., help="Page to build a template from"),
    output: str = typer.Option(None, "-o", "--output", help="Write the template to this file"),
    save: bool = typer.Option(False, "--save", help=f"Write the template to {DEFAULT_TEMPLATE_FILE}"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable verbose logging"),
):
    """Generate a template that matches the page title of a URL."""
    setup_logging(verbose=verbose)
    target = normalize_target(url)
    if save and not output:
        output = DEFAULT_TEMPLATE_FILE

    async def _scaffold() -> str:
        async with ScanServices(AdvancedSettings()) as services:
            return await scaffold_template(services.client, target, output)

    try:
        text = asyncio.run(_scaffold())
    except RequestError as e:
        console.print(f"[red]Template generation failed: {e}[/red]")
        raise typer.Exit(1)

    if output:
        console.print(f"[green]Template saved to: {output}[/green]")
    else:
        typer.echo(text)


if __name__ == "__main__":
    app()
