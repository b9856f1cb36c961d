"""Main CLI entry point for Git Migrator."""

import sys
import asyncio
import importlib
import inspect
import uuid
from typing import Any, List, Optional, Tuple
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
)
from rich.table import Table

from .. import __version__
from ..config.config import Config
from ..exceptions import GitMigratorError
from ..migration.engine import MigrationEngine, MigrationSummary
from ..migration.orchestrator import CallableOrchestrator, MigrationOrchestrator
from ..models.configuration import MigrationConfiguration
from ..models.progress import MigrationProgress
from ..models.repository import RepositoryInfo
from ..progress.store import ProgressStore
from ..progress.tracker import ProgressTracker
from ..utils.logging import setup_logging

console = Console()

DEFAULT_CONFIG_PATHS = ['config.yaml', 'config.yml', '.git-migrator.yaml']


@click.group()
@click.version_option(version=__version__, prog_name='git-migrator')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """Git Migrator - Queue repository migrations and track their progress."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Basic logging until the configuration is loaded
    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
def init(output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]Git Migrator[/bold green]\nInitializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(f'[yellow]Review queue and progress settings in {output}[/yellow]')

    except OSError as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.argument('batch_file', type=click.Path(exists=True, dir_okay=False))
@click.option(
    '--orchestrator',
    '-o',
    'orchestrator_ref',
    required=True,
    help='Orchestrator to run migrations, as module:attribute',
)
@click.option(
    '--operation-id',
    default=None,
    help='Progress operation ID (generated if omitted)',
)
@click.option(
    '--max-concurrent',
    type=click.IntRange(1, 10),
    default=None,
    help='Override the maximum number of concurrent migrations',
)
@click.pass_context
def run(
    ctx: click.Context,
    batch_file: str,
    orchestrator_ref: str,
    operation_id: Optional[str],
    max_concurrent: Optional[int],
) -> None:
    """Queue the repositories in BATCH_FILE and migrate them."""
    console.print(
        Panel.fit(
            '[bold blue]Git Migrator[/bold blue]\nStarting migration run...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        if max_concurrent is not None:
            config.queue.max_concurrent = max_concurrent

        orchestrator = _load_orchestrator(orchestrator_ref)
        entries, configuration = _load_batch(batch_file)

        summary = asyncio.run(
            _run_migration(config, orchestrator, entries, configuration, operation_id)
        )
        _display_migration_summary(summary)

        if summary.failed_migrations:
            sys.exit(1)

    except (GitMigratorError, OSError, ValueError, ImportError) as e:
        console.print(f'[red]✗[/red] Migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument('operation_id', required=False)
@click.pass_context
def status(ctx: click.Context, operation_id: Optional[str]) -> None:
    """Show persisted migration operations, or one operation in detail."""
    console.print(
        Panel.fit(
            '[bold magenta]Git Migrator[/bold magenta]\nMigration Status',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        store = ProgressStore(config.progress.storage_dir)

        if operation_id:
            progress = store.load(operation_id)
            if progress is None:
                console.print(f'[yellow]No persisted operation: {operation_id}[/yellow]')
                sys.exit(1)
            _display_operation(progress)
            return

        operation_ids = store.list_operations()
        if not operation_ids:
            console.print('[yellow]No persisted operations found[/yellow]')
            return

        table = Table(title='Migration Operations')
        table.add_column('Operation', style='cyan')
        table.add_column('Status', style='magenta')
        table.add_column('Repositories', style='blue')
        table.add_column('Completed', style='green')
        table.add_column('Failed', style='red')
        table.add_column('Progress', style='yellow')

        for stored_id in operation_ids:
            progress = store.load(stored_id)
            if progress is None:
                continue
            table.add_row(
                progress.operation_id,
                progress.overall_status.display_name,
                str(progress.total_repositories),
                str(progress.completed_repositories),
                str(progress.failed_repositories),
                f'{progress.overall_progress_percentage:.1f}%',
            )

        console.print(table)

    except (GitMigratorError, OSError, ValueError) as e:
        console.print(f'[red]✗[/red] Failed to load status: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.option(
    '--hours',
    type=click.FloatRange(min=0),
    default=None,
    help='Remove finished operations older than this many hours',
)
@click.pass_context
def cleanup(ctx: click.Context, hours: Optional[float]) -> None:
    """Remove persisted operations that finished long enough ago."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        tracker = ProgressTracker(config.progress)
        for stored_id in tracker.store.list_operations():
            tracker.load_persisted_progress(stored_id)

        removed = tracker.cleanup_old_operations(hours)
        console.print(f'[green]✓[/green] Removed {removed} finished operations')

    except (GitMigratorError, OSError, ValueError) as e:
        console.print(f'[red]✗[/red] Cleanup failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        return Config.from_file(config_path)

    for path in DEFAULT_CONFIG_PATHS:
        if Path(path).exists():
            return Config.from_file(path)

    return Config.from_env()


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = ctx.obj.get('verbose', False)

    # The verbose flag overrides the configured level
    log_level = 'DEBUG' if verbose else config.logging.level
    setup_logging(
        level=log_level,
        log_file=config.logging.file,
        log_format=config.logging.format,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        serialize=config.logging.serialize,
    )


def _load_orchestrator(reference: str) -> MigrationOrchestrator:
    """Resolve ``module:attribute`` to an orchestrator.

    The attribute may be an orchestrator instance, an orchestrator class
    (instantiated without arguments) or a coroutine function taking a
    ``MigrationRequest``.
    """
    module_name, _, attribute = reference.partition(':')
    if not module_name or not attribute:
        raise ValueError(f'Orchestrator must be given as module:attribute, got {reference!r}')

    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attribute)
    except AttributeError as e:
        raise ImportError(f'{module_name} has no attribute {attribute!r}') from e

    if isinstance(target, MigrationOrchestrator):
        return target
    if inspect.isclass(target) and issubclass(target, MigrationOrchestrator):
        return target()
    if inspect.iscoroutinefunction(target):
        return CallableOrchestrator(target)

    raise ValueError(f'{reference} is not a migration orchestrator')


def _load_batch(
    batch_file: str,
) -> Tuple[List[Tuple[RepositoryInfo, int]], MigrationConfiguration]:
    """Read repositories and their shared configuration from a YAML batch file.

    Repositories are given either as clone URLs or as mappings of
    ``RepositoryInfo`` fields with an optional ``priority``.
    """
    with open(batch_file, 'r', encoding='utf-8') as f:
        batch = yaml.safe_load(f) or {}

    if not isinstance(batch, dict):
        raise ValueError('Batch file must contain a mapping')

    configuration = MigrationConfiguration(**(batch.get('configuration') or {}))

    entries = []
    for entry in batch.get('repositories') or []:
        if isinstance(entry, str):
            entries.append((RepositoryInfo.from_url(entry), 0))
        elif isinstance(entry, dict):
            fields = dict(entry)
            priority = int(fields.pop('priority', 0))
            entries.append((RepositoryInfo(**fields), priority))
        else:
            raise ValueError(f'Invalid repository entry: {entry!r}')

    if not entries:
        raise ValueError('Batch file lists no repositories')

    return entries, configuration


async def _run_migration(
    config: Config,
    orchestrator: MigrationOrchestrator,
    entries: List[Tuple[RepositoryInfo, int]],
    configuration: MigrationConfiguration,
    operation_id: Optional[str] = None,
) -> MigrationSummary:
    """Run the migration with a live progress bar fed by the tracker."""
    engine = MigrationEngine(config, orchestrator)
    operation_id = operation_id or str(uuid.uuid4())

    for repository, priority in entries:
        engine.submit([repository], configuration, priority)

    with Progress(
        SpinnerColumn(),
        TextColumn('[progress.description]{task.description}'),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task('[blue]Migration starting...', total=len(entries))

        def update_progress(operation: MigrationProgress) -> None:
            finished = operation.completed_repositories + operation.failed_repositories
            progress.update(
                task,
                completed=finished,
                total=operation.total_repositories or len(entries),
                description=f'[blue]Migrated {finished}/{operation.total_repositories}',
            )

        engine.tracker.add_progress_listener(operation_id, update_progress)
        try:
            summary = await engine.run(operation_id)
        finally:
            engine.tracker.remove_progress_listener(operation_id, update_progress)

        progress.update(task, description='[green]Migration completed')

    return summary


def _display_migration_summary(summary: MigrationSummary) -> None:
    """Display migration summary results."""
    table = Table(title='Migration Summary')
    table.add_column('Total', style='blue')
    table.add_column('Successful', style='green')
    table.add_column('Failed', style='red')
    table.add_column('Cancelled', style='yellow')
    table.add_column('Unprocessed', style='magenta')

    table.add_row(
        str(summary.total_repositories),
        str(summary.successful_migrations),
        str(summary.failed_migrations),
        str(summary.cancelled_migrations),
        str(summary.unprocessed),
    )
    console.print(table)

    if summary.completed_at:
        duration = summary.completed_at - summary.started_at
        console.print(f'\n[blue]Migration Duration:[/blue] {duration}')
    console.print(f'[blue]Operation:[/blue] {summary.operation_id}')

    errors = [
        f'{result.repository_name}: {result.message}'
        for result in summary.results
        if not result.success
    ]
    if errors:
        console.print(f'\n[red]Errors ({len(errors)}):[/red]')
        for error in errors[:5]:
            console.print(f'  • {error}')
        if len(errors) > 5:
            console.print(f'  ... and {len(errors) - 5} more errors')


def _display_operation(progress: MigrationProgress) -> None:
    """Display one operation with a row per repository."""
    console.print(
        f'[bold]{progress.operation_id}[/bold] - '
        f'{progress.overall_status.display_name} '
        f'({progress.overall_progress_percentage:.1f}%)'
    )

    table = Table(title='Repositories')
    table.add_column('Repository', style='cyan')
    table.add_column('Status', style='magenta')
    table.add_column('Progress', style='yellow')
    table.add_column('Error', style='red')

    for repository in progress.repository_progress.values():
        table.add_row(
            repository.repository_name,
            repository.status_display_text,
            f'{repository.progress_percentage:.1f}%',
            repository.error_message or '',
        )

    console.print(table)

    for line in progress.global_logs[-10:]:
        console.print(f'  {line}')


def main(args: Optional[List[Any]] = None) -> None:
    """Main entry point for the CLI application."""
    try:
        cli(args)
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
