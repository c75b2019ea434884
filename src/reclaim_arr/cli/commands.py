"""CLI commands for reclaim-arr."""

import sys
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Tuple

import click

from reclaim_arr.api.qbit_client import QBittorrentClient
from reclaim_arr.api.radarr_client import RadarrClient
from reclaim_arr.api.tmdb_client import TmdbClient
from reclaim_arr.api.watcher_client import WatcherClient
from reclaim_arr.config import Config, get_config
from reclaim_arr.core import settings_store, tracker_rules
from reclaim_arr.core.catalogue_sync import CatalogueSyncService
from reclaim_arr.core.deletion import DeletionService, deletion_warning
from reclaim_arr.core.hardlink import HardlinkReplacementSelector
from reclaim_arr.core.matcher import CatalogueMatcher
from reclaim_arr.core.torrent_sync import TorrentSyncService, clean_history
from reclaim_arr.core.volumes import sync_volumes
from reclaim_arr.db.models import (
    MediaFile,
    Movie,
    MovieFile,
    RadarrInstance,
    ScheduledDeletion,
    TorrentStat,
    Volume,
)
from reclaim_arr.db.session import create_db_engine, create_session_factory, init_db, session_scope
from reclaim_arr.exceptions import EntityNotFoundError, ReclaimArrError
from reclaim_arr.cli.formatters import (
    print_catalogue_result,
    print_deletion_report,
    print_match_statistics,
    print_status,
    print_torrent_result,
    print_tracker_rules,
    print_volume_result,
    print_error,
    print_success,
    print_warning,
    create_progress,
    console
)

logger = logging.getLogger(__name__)


def _setup_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format=config.logging.format,
    )


def _radarr_factory(config: Config):
    return lambda instance: RadarrClient(instance, config.paths)


def _tmdb(config: Config) -> Optional[TmdbClient]:
    client = TmdbClient(config.tmdb)
    return client if client.is_configured else None


def _matcher(session, config: Config) -> CatalogueMatcher:
    return CatalogueMatcher(
        session,
        _radarr_factory(config),
        tmdb=_tmdb(config),
        batch_size=config.sync.match_batch_size,
    )


def _deletion_service(session, config: Config) -> DeletionService:
    return DeletionService(
        session,
        _radarr_factory(config),
        selector=HardlinkReplacementSelector(WatcherClient(config.watcher)),
    )


@click.group()
@click.option(
    '--config',
    type=click.Path(exists=True, path_type=Path),
    help='Path to configuration file'
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path]) -> None:
    """
    reclaim-arr: media library reconciliation tool.

    Matches files on your volumes to the Radarr catalogue, tracks the
    qBittorrent torrents seeding them, and retires files on schedule.
    """
    ctx.ensure_object(dict)

    try:
        cfg = get_config(config)
        _setup_logging(cfg)
        engine = create_db_engine(cfg.database)
        init_db(engine)
    except Exception as e:
        print_error(f"Failed to load configuration: {e}")
        sys.exit(1)

    ctx.obj['config'] = cfg
    ctx.obj['session_factory'] = create_session_factory(engine)


def _run(ctx: click.Context, description: str, work):
    """Run work(session, config) under a spinner; exit 1 on failure."""
    config = ctx.obj['config']

    with create_progress() as progress:
        task = progress.add_task(f"[cyan]{description}...", total=None)

        try:
            with session_scope(ctx.obj['session_factory']) as session:
                result = work(session, config)
            progress.update(task, completed=True)
            return result

        except ReclaimArrError as e:
            progress.stop()
            print_error(str(e))
            sys.exit(1)
        except Exception as e:
            progress.stop()
            print_error(f"{description} failed: {e}")
            logger.exception(f"{description} failed")
            sys.exit(1)


@cli.command('radarr-add')
@click.argument('name')
@click.argument('url')
@click.argument('api_key')
@click.option('--skip-check', is_flag=True, help='Do not test the connection first')
@click.pass_context
def radarr_add(ctx: click.Context, name: str, url: str, api_key: str, skip_check: bool) -> None:
    """Register a Radarr instance."""
    def work(session, config):
        instance = RadarrInstance(name=name, url=url.rstrip('/'), api_key=api_key, is_active=True)
        if not skip_check:
            status = RadarrClient(instance, config.paths).get_system_status()
            logger.info(f"Radarr '{name}' reachable, version {status.get('version', 'unknown')}")
        session.add(instance)
        session.flush()
        return instance.id

    instance_id = _run(ctx, "Adding Radarr instance", work)
    print_success(f"Radarr instance '{name}' added (id {instance_id})")


@cli.command('sync-radarr')
@click.pass_context
def sync_radarr(ctx: click.Context) -> None:
    """Import movies from every active Radarr instance, then match files."""
    def work(session, config):
        service = CatalogueSyncService(
            session,
            _radarr_factory(config),
            _matcher(session, config),
            tmdb=_tmdb(config),
            batch_size=config.sync.match_batch_size,
        )
        return service.sync()

    print_catalogue_result(_run(ctx, "Syncing Radarr", work))


@cli.command()
@click.pass_context
def match(ctx: click.Context) -> None:
    """Link unmatched media files to catalogue entries."""
    stats = _run(ctx, "Matching files", lambda session, config: _matcher(session, config).match_all())
    print_match_statistics(stats)


@cli.command('sync-torrents')
@click.pass_context
def sync_torrents(ctx: click.Context) -> None:
    """Reconcile qBittorrent torrents with media files."""
    def work(session, config):
        qbit = QBittorrentClient(config.qbittorrent)
        service = TorrentSyncService(
            session,
            qbit,
            _radarr_factory(config),
            stale_after_minutes=config.sync.stale_after_minutes,
        )
        try:
            return service.sync()
        finally:
            qbit.disconnect()

    result = _run(ctx, "Syncing torrents", work)
    print_torrent_result(result)
    if result.errors:
        print_warning(f"{result.errors} error(s) during torrent sync, see log")


@cli.command('clean-history')
@click.option('--days', type=int, default=None, help='Keep snapshots newer than this many days')
@click.pass_context
def clean_history_cmd(ctx: click.Context, days: Optional[int]) -> None:
    """Delete old torrent statistics snapshots."""
    def work(session, config):
        return clean_history(session, days or config.sync.history_retention_days)

    deleted = _run(ctx, "Cleaning torrent history", work)
    print_success(f"Deleted {deleted} snapshot(s)")


@cli.command()
@click.pass_context
def trackers(ctx: click.Context) -> None:
    """List tracker rules."""
    def work(session, config):
        rules = tracker_rules.list_rules(session)
        print_tracker_rules(rules)

    _run(ctx, "Loading tracker rules", work)


@cli.command('tracker-set')
@click.argument('rule_id', type=int)
@click.option('--min-seed-hours', type=int, default=None, help='Minimum seed time in hours')
@click.option('--min-ratio', type=float, default=None, help='Minimum ratio')
@click.pass_context
def tracker_set(ctx: click.Context, rule_id: int, min_seed_hours: Optional[int], min_ratio: Optional[float]) -> None:
    """Set the seeding requirements of a tracker rule."""
    def work(session, config):
        rule = tracker_rules.update_rule(session, rule_id, min_seed_hours, min_ratio)
        return rule.tracker_domain, rule.min_seed_time_hours, rule.min_ratio

    domain, hours, ratio = _run(ctx, "Updating tracker rule", work)
    print_success(f"{domain}: {hours}h minimum seed time, ratio {ratio:.2f}")


@cli.command('sync-volumes')
@click.argument('paths', nargs=-1, required=True)
@click.pass_context
def sync_volumes_cmd(ctx: click.Context, paths: Tuple[str, ...]) -> None:
    """Create or reactivate volumes for the watched PATHS; deactivate the rest."""
    result = _run(ctx, "Syncing volumes", lambda session, config: sync_volumes(session, paths))
    print_volume_result(result)


@cli.command()
@click.argument('movie_ids', type=int, nargs=-1, required=True)
@click.option('--date', 'scheduled', type=click.DateTime(formats=['%Y-%m-%d']), required=True,
              help='Execution date (YYYY-MM-DD)')
@click.option('--keep-files', is_flag=True, help='Do not delete files on disk')
@click.option('--remove-from-radarr', is_flag=True, help='Remove the movie from Radarr')
@click.option('--unmonitor', is_flag=True, help='Disable Radarr auto-search')
@click.option('--user', default=None, help='Recorded as the creator')
@click.pass_context
def schedule(
    ctx: click.Context,
    movie_ids: Tuple[int, ...],
    scheduled: datetime,
    keep_files: bool,
    remove_from_radarr: bool,
    unmonitor: bool,
    user: Optional[str],
) -> None:
    """Schedule deletion of MOVIE_IDS."""
    def work(session, config):
        deletion = _deletion_service(session, config).schedule_deletion(
            list(movie_ids),
            scheduled.date(),
            created_by=user,
            delete_physical_files=not keep_files,
            delete_radarr_reference=remove_from_radarr,
            disable_radarr_auto_search=unmonitor,
        )
        warnings = []
        for item in deletion.items:
            warning = deletion_warning(deletion, item.movie) if item.movie else None
            if warning:
                warnings.append(f"{item.movie.title}: {warning}")
        return deletion.id, warnings

    deletion_id, warnings = _run(ctx, "Scheduling deletion", work)
    for warning in warnings:
        print_warning(warning)
    print_success(f"Deletion {deletion_id} scheduled for {scheduled.date()}")


@cli.command()
@click.argument('deletion_id', type=int)
@click.pass_context
def cancel(ctx: click.Context, deletion_id: int) -> None:
    """Cancel a pending deletion."""
    def work(session, config):
        deletion = session.get(ScheduledDeletion, deletion_id)
        if deletion is None:
            raise EntityNotFoundError("ScheduledDeletion", deletion_id)
        _deletion_service(session, config).cancel(deletion)

    _run(ctx, "Cancelling deletion", work)
    print_success(f"Deletion {deletion_id} cancelled")


@cli.command('process-deletions')
@click.option('--date', 'today', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
              help='Treat this date as today')
@click.pass_context
def process_deletions(ctx: click.Context, today: Optional[datetime]) -> None:
    """Send reminders and execute every deletion that is due."""
    day: Optional[date] = today.date() if today else None

    def work(session, config):
        service = _deletion_service(session, config)
        reminders = service.send_reminders(day)
        results = [
            (deletion.id, deletion.status, report)
            for deletion, report in service.process_due_deletions(day)
        ]
        return reminders, results

    reminders, results = _run(ctx, "Processing deletions", work)

    if reminders:
        console.print(f"[cyan]{reminders} reminder(s) sent[/cyan]")
    if not results:
        console.print("[green]No deletions due.[/green]")
    for deletion_id, status, report in results:
        print_deletion_report(deletion_id, status, report)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show library counters and the last torrent sync."""
    def work(session, config):
        counts = {
            "Volumes": session.query(Volume).count(),
            "Media files": session.query(MediaFile).count(),
            "Movies": session.query(Movie).count(),
            "Links": session.query(MovieFile).count(),
            "Torrents": session.query(TorrentStat).count(),
        }
        print_status(counts, settings_store.last_torrent_sync(session))

    _run(ctx, "Loading status", work)


@cli.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """Display configuration information."""
    config = ctx.obj['config']

    from rich.table import Table
    from rich import box

    table = Table(title="Configuration", box=box.ROUNDED)
    table.add_column("Service", style="cyan")
    table.add_column("Setting", style="yellow")
    table.add_column("Value", style="green")

    # qBittorrent
    if config.qbittorrent.is_configured:
        table.add_row("qBittorrent", "URL", config.qbittorrent.url)
        table.add_row("", "Username", config.qbittorrent.username)
    else:
        table.add_row("qBittorrent", "URL", "[red]Not set[/red]")

    # TMDB
    table.add_row("TMDB", "API Key", "***" if config.tmdb.api_key else "[red]Not set[/red]")

    # Watcher
    table.add_row("Watcher", "URL", config.watcher.url)

    # Paths
    table.add_row("Paths", "Radarr base", config.paths.remote_path_base or "-")
    table.add_row("", "Local base", config.paths.local_path_base or "-")

    # Database
    table.add_row("Database", "URL", config.database.url)

    console.print(table)


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
