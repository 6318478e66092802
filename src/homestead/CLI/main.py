"""
Command Line Interface for homestead.
"""
import click
from ..ENGINES.base import ContainerEngine
from ..ENGINES.docker_engine import DockerEngine
from ..MANAGERS.service_orchestrator import ServiceOrchestrator
from ..MODELS.reconciler_settings import ReconcilerSettings
from ..MODELS.reconciliation_plan import CycleReport, ReconciliationPlan
from ..UTILS.logger import setup_logging
from ..errors import HomesteadError

EXIT_OK = 0
EXIT_DEGRADED = 1
EXIT_ERROR = 2


def make_engine(settings: ReconcilerSettings) -> ContainerEngine:
    """
    Creates the engine adapter for a run.
    """
    return DockerEngine(project=settings.project)


@click.group()
@click.option('--file', '-f', default='services.yml', envvar='HOMESTEAD_FILE', show_default=True,
              help='Service catalog path')
@click.option('--env-file', '-e', 'env_files', multiple=True, default=('.env',), envvar='HOMESTEAD_ENV_FILES',
              show_default=True, help='Environment layer file, least specific first (repeatable)')
@click.option('--data-dir', default='./data', envvar='HOMESTEAD_DATA_DIR', show_default=True,
              help='Root for relative volume paths')
@click.option('--project', '-p', default='homestead', envvar='HOMESTEAD_PROJECT', show_default=True,
              help='Label that scopes managed containers')
@click.option('--process-env/--no-process-env', default=False, envvar='HOMESTEAD_PROCESS_ENV',
              help='Use the shell environment as the most specific layer')
@click.option('--workers', default=4, type=click.IntRange(min=1), envvar='HOMESTEAD_WORKERS', show_default=True,
              help='Concurrent engine calls')
@click.option('--timeout', default=300.0, type=click.FloatRange(min=0, min_open=True), envvar='HOMESTEAD_TIMEOUT',
              show_default=True, help='Seconds before an action counts as failed')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.option('--log-file', default=None, envvar='HOMESTEAD_LOG_FILE', help='Also log to this file')
@click.pass_context
def cli(ctx, file, env_files, data_dir, project, process_env, workers, timeout, verbose, log_file):
    """
    Homestead - declarative home server reconciler.

    Keeps the containers on this machine in line with a service catalog.
    """
    ctx.ensure_object(dict)
    setup_logging(verbose=verbose, log_file=log_file)
    ctx.obj['settings'] = ReconcilerSettings(
        catalog_path=file,
        env_files=list(env_files),
        data_dir=data_dir,
        project=project,
        include_process_env=process_env,
        max_workers=workers,
        action_timeout=timeout,
    )


def _orchestrator(ctx) -> ServiceOrchestrator:
    settings = ctx.obj['settings']
    return ServiceOrchestrator(settings, make_engine(settings))


def _print_report(report: CycleReport):
    click.echo(f"{'SERVICE':20} {'ACTION':10} {'STATUS':10} DETAIL")
    click.echo("-" * 60)
    for name, outcome in report.outcomes.items():
        kind = outcome.kind.value if outcome.kind else "-"
        click.echo(f"{name:20} {kind:10} {outcome.status.value:10} {outcome.error or ''}".rstrip())


def _finish(ctx, report: CycleReport):
    _print_report(report)
    if report.ok:
        click.echo("All services reconciled.")
        ctx.exit(EXIT_OK)
    click.echo(f"Failed: {', '.join(report.failed) or 'none'}; blocked: {', '.join(report.blocked) or 'none'}")
    ctx.exit(EXIT_DEGRADED)


@cli.command()
@click.pass_context
def setup(ctx):
    """Run one full reconciliation cycle."""
    try:
        report = _orchestrator(ctx).setup()
    except HomesteadError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)
    _finish(ctx, report)


@cli.command()
@click.option('--git-pull/--no-git-pull', default=False, envvar='HOMESTEAD_GIT_PULL',
              help='Fast-forward the configuration checkout first')
@click.pass_context
def update(ctx, git_pull):
    """Stop all services, pull images and reconcile."""
    ctx.obj['settings'].git_pull = git_pull
    try:
        report = _orchestrator(ctx).update()
    except HomesteadError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)
    _finish(ctx, report)


@cli.command()
@click.pass_context
def plan(ctx):
    """Show what a cycle would do, without doing it."""
    try:
        result: ReconciliationPlan = _orchestrator(ctx).plan()
    except HomesteadError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)
    click.echo(f"{'SERVICE':20} {'ACTION':10} CHANGES")
    click.echo("-" * 45)
    for action in result.actions:
        click.echo(f"{action.service:20} {action.kind.value:10} {', '.join(action.changes)}".rstrip())
    for name, error in result.unresolved.items():
        click.echo(f"{name:20} {'-':10} {error}")


@cli.command()
@click.pass_context
def ps(ctx):
    """List managed running services"""
    try:
        running = _orchestrator(ctx).ps()
    except HomesteadError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)
    click.echo(f"{'SERVICE':20} {'IMAGE':40}")
    click.echo("-" * 60)
    for name, image in running.items():
        click.echo(f"{name:20} {image:40}".rstrip())


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
