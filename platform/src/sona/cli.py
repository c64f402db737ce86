"""CLI entry point for the SONA generation-governance tools."""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """SONA settings, templates, statistics and data portability."""


# ---------------------------------------------------------------------------
# settings: view, change, export and import generation settings
# ---------------------------------------------------------------------------


@main.group(name="settings")
def settings_group() -> None:
    """Generation settings."""


@settings_group.command(name="show")
def settings_show() -> None:
    """Show the current settings."""
    services = _services()
    current = services.settings.get_settings().model_dump(mode="json")

    table = Table(title="SONA Settings")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in current.items():
        table.add_row(key, json.dumps(value, ensure_ascii=False))
    console.print(table)


@settings_group.command(name="set")
@click.argument("name")
@click.argument("value")
@click.option("--by", "updated_by", default="cli", help="Recorded as the author of the change")
def settings_set(name: str, value: str, updated_by: str) -> None:
    """Set one setting. VALUE is parsed as JSON, falling back to plain text."""
    services = _services()
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value

    changes = services.settings.diff({name: parsed})
    result = services.settings.update_setting(name, parsed, updated_by)
    if not result.valid:
        _print_errors(result.errors)
        raise SystemExit(1)

    if changes:
        change = changes[name]
        console.print(f"[green]{name}:[/green] {change['old']!r} -> {change['new']!r}")
    else:
        console.print(f"[dim]{name} unchanged[/dim]")


@settings_group.command(name="export")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to a file instead of stdout")
def settings_export(output: str | None) -> None:
    """Export settings as JSON."""
    services = _services()
    text = services.settings.export_json()
    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print(f"[green]Settings written to {output}[/green]")
    else:
        click.echo(text)


@settings_group.command(name="import")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
def settings_import(file_path: str) -> None:
    """Replace all settings with the contents of a JSON file."""
    from sona.exceptions import SonaError

    services = _services()
    try:
        result = services.settings.import_json(Path(file_path).read_text(encoding="utf-8"), "cli")
    except SonaError as e:
        _fail(e)
    if not result.valid:
        _print_errors(result.errors)
        raise SystemExit(1)
    console.print("[green]Settings imported[/green]")


# ---------------------------------------------------------------------------
# templates: versioned template history
# ---------------------------------------------------------------------------


@main.group()
def templates() -> None:
    """Template versions: save, history, rollback, diff, archive."""


@templates.command(name="save")
@click.argument("template_id")
@click.option("--file", "-f", "file_path", type=click.Path(exists=True, dir_okay=False), required=True,
              help="File holding the template text")
@click.option("--type", "-T", "template_type", default="paragraph", help="Template type")
@click.option("--category", "-c", default=None, help="Template category")
@click.option("--message", "-m", "description", default=None, help="Change description")
@click.option("--by", "created_by", default="cli", help="Author of this version")
def templates_save(
    template_id: str,
    file_path: str,
    template_type: str,
    category: str | None,
    description: str | None,
    created_by: str,
) -> None:
    """Save a new version of a template."""
    from sona.versioning.versions import extract_template_variables, validate_template_content

    services = _services()
    content = Path(file_path).read_text(encoding="utf-8")
    check = validate_template_content(content)
    if not check.valid:
        _print_errors(check.errors)
        raise SystemExit(1)

    variables = {name: "" for name in extract_template_variables(content)}
    record = services.versions.save_version(
        template_id,
        template_type,
        content,
        category=category,
        change_description=description,
        created_by=created_by,
        variables=variables,
    )
    console.print(f"[green]Saved {template_id} v{record.version}[/green]")


@templates.command(name="history")
@click.argument("template_id")
@click.option("--limit", "-n", default=20, help="Number of versions to show")
def templates_history(template_id: str, limit: int) -> None:
    """List the versions of a template, newest first."""
    services = _services()
    entries = services.versions.change_log(template_id, limit)
    if not entries:
        console.print(f"[yellow]No versions for {template_id}[/yellow]")
        return

    table = Table(title=f"History of {template_id}")
    table.add_column("Version", justify="right")
    table.add_column("Created")
    table.add_column("By")
    table.add_column("Description")
    for entry in entries:
        table.add_row(
            str(entry.version),
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.created_by or "",
            entry.change_description or "",
        )
    console.print(table)


@templates.command(name="rollback")
@click.argument("template_id")
@click.argument("version", type=int)
def templates_rollback(template_id: str, version: int) -> None:
    """Republish an earlier version as the newest one."""
    from sona.exceptions import SonaError

    services = _services()
    try:
        record = services.versions.rollback(template_id, version)
    except SonaError as e:
        _fail(e)
    console.print(f"[green]Rolled back {template_id} to v{version} (now v{record.version})[/green]")


@templates.command(name="diff")
@click.argument("template_id")
@click.argument("version1", type=int)
@click.argument("version2", type=int)
def templates_diff(template_id: str, version1: int, version2: int) -> None:
    """Line diff between two versions."""
    from sona.exceptions import SonaError

    services = _services()
    try:
        diff = services.versions.compare(template_id, version1, version2)
    except SonaError as e:
        _fail(e)

    console.print(Panel(diff.summary, title=f"{template_id} v{version1} -> v{version2}"))
    for line in diff.modified:
        if line.type.value == "added":
            console.print(f"[green]+ {line.line_number}: {line.new_content}[/green]")
        elif line.type.value == "removed":
            console.print(f"[red]- {line.line_number}: {line.old_content}[/red]")
        else:
            console.print(f"[yellow]~ {line.line_number}: {line.old_content} -> {line.new_content}[/yellow]")


@templates.command(name="archive")
@click.argument("template_id")
def templates_archive(template_id: str) -> None:
    """Archive every version of a template."""
    count = _services().versions.archive(template_id)
    console.print(f"Archived {count} versions of {template_id}")


@templates.command(name="restore")
@click.argument("template_id")
def templates_restore(template_id: str) -> None:
    """Restore an archived template."""
    count = _services().versions.restore(template_id)
    console.print(f"Restored {count} versions of {template_id}")


# ---------------------------------------------------------------------------
# stats: generation analytics
# ---------------------------------------------------------------------------


@main.command()
@click.option("--from", "start", default=None, help="Period start date")
@click.option("--to", "end", default=None, help="Period end date")
def stats(start: str | None, end: str | None) -> None:
    """Show generation statistics."""
    services = _services()
    period = _period(start, end)
    summary = services.analytics.summary(period)

    console.print(
        Panel(
            f"Total: [bold]{summary.total_generations}[/bold]  "
            f"Succeeded: [green]{summary.successful_generations}[/green]  "
            f"Failed: [red]{summary.failed_generations}[/red]\n"
            f"Average quality: {summary.avg_quality_score}  "
            f"Average time: {summary.avg_generation_time} ms  "
            f"Trend: {summary.recent_trend}\n"
            f"Error rate: {services.analytics.error_rate()}%  "
            f"Retry rate: {services.analytics.retry_rate()}%  "
            f"Diversity: {services.analytics.diversity_score()}",
            title="SONA Statistics",
        )
    )

    if summary.top_categories:
        table = Table(title="Top Categories")
        table.add_column("Category")
        table.add_column("Count", justify="right")
        table.add_column("Share", justify="right")
        for category in summary.top_categories:
            table.add_row(category.category, str(category.count), f"{category.percentage:.1f}%")
        console.print(table)

    if summary.top_templates:
        table = Table(title="Top Templates")
        table.add_column("Template")
        table.add_column("Uses", justify="right")
        table.add_column("Avg quality", justify="right")
        for usage in summary.top_templates:
            table.add_row(usage.template_id, str(usage.usage_count), f"{usage.avg_quality_score:.1f}")
        console.print(table)


# ---------------------------------------------------------------------------
# export / import: data portability
# ---------------------------------------------------------------------------


@main.command(name="export")
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Output file")
@click.option("--no-knowledge", is_flag=True, help="Leave out knowledge files")
@click.option("--no-templates", is_flag=True, help="Leave out template files")
@click.option("--no-synonyms", is_flag=True, help="Leave out synonyms")
@click.option("--no-phrases", is_flag=True, help="Leave out phrases")
@click.option("--no-settings", is_flag=True, help="Leave out settings")
@click.option("--with-stats", is_flag=True, help="Include the last 30 days of stats")
@click.option("--stats-csv", is_flag=True, help="Write daily stats as CSV instead")
@click.option("--by", "exported_by", default=None, help="Recorded in the export metadata")
def export_cmd(
    output: str,
    no_knowledge: bool,
    no_templates: bool,
    no_synonyms: bool,
    no_phrases: bool,
    no_settings: bool,
    with_stats: bool,
    stats_csv: bool,
    exported_by: str | None,
) -> None:
    """Export SONA data to a JSON file."""
    from sona.portability.schema import ExportOptions

    services = _services()
    path = Path(output)
    if stats_csv:
        path.write_text(services.portability.export_stats_csv(), encoding="utf-8")
        console.print(f"[green]Stats written to {path}[/green]")
        return

    options = ExportOptions(
        include_knowledge=not no_knowledge,
        include_templates=not no_templates,
        include_synonyms=not no_synonyms,
        include_phrases=not no_phrases,
        include_settings=not no_settings,
        include_stats=with_stats,
    )
    path.write_text(services.portability.export_json(options, exported_by), encoding="utf-8")
    console.print(f"[green]Exported to {path}[/green]")


@main.command(name="import")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--mode",
    type=click.Choice(["merge", "replace", "skip"]),
    default="merge",
    help="What to do with entries that already exist",
)
@click.option("--no-validate", is_flag=True, help="Skip validation before importing")
def import_cmd(file_path: str, mode: str, no_validate: bool) -> None:
    """Import SONA data from a JSON export."""
    from sona.portability.schema import ConflictResolution, ImportOptions

    services = _services()
    options = ImportOptions(
        conflict_resolution=ConflictResolution(mode),
        validate_before_import=not no_validate,
    )
    result = services.portability.import_data(Path(file_path).read_text(encoding="utf-8"), options)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if not result.success:
        _print_errors(result.errors)
        raise SystemExit(1)

    counts = result.imported
    console.print(
        f"[green]Imported[/green] knowledge={counts.knowledge} templates={counts.templates} "
        f"synonyms={counts.synonyms} phrases={counts.phrases} settings={counts.settings} "
        f"(skipped {result.skipped})"
    )


# ---------------------------------------------------------------------------
# logs: generation log
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", "-n", default=20, help="Number of rows to show")
@click.option("--errors", "errors_only", is_flag=True, help="Only failed generations")
@click.option("--export", "fmt", type=click.Choice(["json", "csv"]), default=None,
              help="Export logs in a period instead of listing them")
@click.option("--from", "start", default=None, help="Export period start")
@click.option("--to", "end", default=None, help="Export period end")
@click.option("--locale", type=click.Choice(["ar", "en"]), default=None, help="CSV header language")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Export file")
def logs(
    limit: int,
    errors_only: bool,
    fmt: str | None,
    start: str | None,
    end: str | None,
    locale: str | None,
    output: str | None,
) -> None:
    """List or export the generation log."""
    from sona.analytics.period import DateRange

    services = _services()

    if fmt:
        period = _period(start, end) or DateRange.last_days(30)
        text = services.oplog.export_logs(period, fmt, locale)
        if output:
            Path(output).write_text(text, encoding="utf-8")
            console.print(f"[green]Logs written to {output}[/green]")
        else:
            click.echo(text)
        return

    rows = services.oplog.error_logs(limit) if errors_only else services.oplog.database_logs(limit)
    if not rows:
        console.print("[dim]No log entries.[/dim]")
        return

    table = Table(title="Generation Log")
    table.add_column("Time")
    table.add_column("Topic", max_width=40)
    table.add_column("Category")
    table.add_column("Quality", justify="right")
    table.add_column("Words", justify="right")
    table.add_column("OK", justify="center")
    table.add_column("Error", max_width=40)
    for row in rows:
        table.add_row(
            row.timestamp.strftime("%Y-%m-%d %H:%M"),
            row.topic,
            row.category,
            f"{row.quality_score or 0:.1f}",
            str(row.word_count),
            "[green]yes[/green]" if row.success else "[red]no[/red]",
            row.error_message or "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _services():
    """Build the component graph from environment configuration."""
    from sona.config import get_settings
    from sona.logging_setup import configure_logging
    from sona.services import SonaServices

    settings = get_settings()
    configure_logging(settings)
    return SonaServices.build(settings)


def _period(start: str | None, end: str | None):
    """Parse --from/--to into a DateRange; None unless both are given."""
    from sona.analytics.period import DateRange

    if not (start and end):
        return None
    try:
        return DateRange.parse(start, end)
    except (ValueError, OverflowError) as e:
        _fail(e)


def _print_errors(errors: list[str]) -> None:
    for error in errors:
        console.print(f"[bold red]Error:[/bold red] {error}")


def _fail(error: Exception) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {error}")
    raise SystemExit(1)
