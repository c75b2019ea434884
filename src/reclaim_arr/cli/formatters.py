"""Output formatters for CLI using Rich."""

from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from reclaim_arr.core.models import (
    CatalogueSyncResult,
    DeletionReport,
    MatchStatistics,
    TorrentSyncResult,
    VolumeSyncResult,
)
from reclaim_arr.db.models import TrackerRule

console = Console()


def format_size(size: int) -> str:
    """Format file size in human-readable format."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} PB"


def _counter_panel(title: str, rows: Dict[str, Any], border_style: str = "blue") -> None:
    table = Table(show_header=False, box=box.SIMPLE)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    for label, value in rows.items():
        table.add_row(label, str(value))

    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style=border_style))


def print_match_statistics(stats: MatchStatistics) -> None:
    _counter_panel("Matching", {
        "Matched via Radarr": stats.radarr_matched,
        "Matched via filename": stats.parse_matched,
        "Total links": stats.total_links,
    })


def print_catalogue_result(result: CatalogueSyncResult) -> None:
    _counter_panel("Radarr Sync", {
        "Imported": result.imported,
        "Updated": result.updated,
        "Enriched": result.enriched,
    })
    print_match_statistics(result.matching)


def print_torrent_result(result: TorrentSyncResult) -> None:
    errors = f"[red]{result.errors}[/red]" if result.errors else "0"
    _counter_panel("Torrent Sync", {
        "Torrents synced": result.torrents_synced,
        "New trackers": result.new_trackers,
        "Unmatched": result.unmatched,
        "Marked removed": result.stale_removed,
        "Errors": errors,
    })


def print_volume_result(result: VolumeSyncResult) -> None:
    _counter_panel("Volumes", {
        "Created": result.created,
        "Reactivated": result.reactivated,
        "Deactivated": result.deactivated,
    })


def print_tracker_rules(rules: List[TrackerRule]) -> None:
    """Print tracker rules in a table."""
    if not rules:
        console.print("[yellow]No tracker rules yet. Run sync-torrents first.[/yellow]")
        return

    table = Table(title=f"Tracker Rules ({len(rules)})", box=box.ROUNDED)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Tracker", style="cyan")
    table.add_column("Min Seed Time", style="green", justify="right")
    table.add_column("Min Ratio", style="green", justify="right")
    table.add_column("Auto", style="magenta", justify="center")

    for rule in rules:
        table.add_row(
            str(rule.id),
            rule.tracker_domain,
            f"{rule.min_seed_time_hours}h",
            f"{rule.min_ratio:.2f}",
            "✓" if rule.is_auto_detected else "",
        )

    console.print(table)


def print_deletion_report(deletion_id: int, status: str, report: DeletionReport) -> None:
    """Print the per-item outcome of a deletion run."""
    style = "green" if status == "completed" else "red"
    table = Table(
        title=f"Deletion {deletion_id}: [{style}]{status}[/{style}]",
        box=box.ROUNDED,
    )
    table.add_column("Movie", style="yellow", overflow="fold")
    table.add_column("Deleted", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Freed", style="green", justify="right")
    table.add_column("Radarr", style="cyan", justify="center")
    table.add_column("Errors", style="red", overflow="fold")

    for item in report.items:
        table.add_row(
            item.movie or "-",
            str(item.files_deleted),
            str(item.files_failed),
            format_size(item.space_freed_bytes),
            "✓" if item.radarr_dereferenced else "",
            "; ".join(item.errors) or "-",
        )

    console.print(table)
    console.print(f"[dim]{report.success_count} deleted, {report.failed_count} failed, "
                  f"{format_size(report.space_freed_bytes)} freed[/dim]")


def print_status(counts: Dict[str, int], last_sync: Dict[str, Any]) -> None:
    rows: Dict[str, Any] = {name: count for name, count in counts.items()}
    synced_at = last_sync.get("synced_at")
    rows["Last torrent sync"] = synced_at.strftime("%Y-%m-%d %H:%M") if synced_at else "[yellow]never[/yellow]"
    result = last_sync.get("result") or {}
    if result:
        rows["Last sync result"] = ", ".join(f"{k}={v}" for k, v in result.items())
    _counter_panel("reclaim-arr Status", rows, border_style="green")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]✓[/bold green] {message}")


def create_progress() -> Progress:
    """Create a progress bar for long-running operations."""
    return Progress(
        SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
    )
