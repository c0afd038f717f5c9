#!/usr/bin/env python3
"""
YouTube Trust Check CLI

Run the API server, analyze a single video inline, inspect jobs and clear
jobs that are stuck after a crash.
"""

import asyncio
import json
import logging
import sys
from typing import Tuple

import click

from api.services import Services, build_services
from config import get_settings
from core.database import create_database, reset_database
from core.error_handling import InvalidInput, JobBusy, JobNotFound, PipelineError
from core.maintenance import mark_jobs_failed, stuck_jobs_report

__version__ = "1.0.0"


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.value, logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


async def _with_services(action):
    """Run action(services) with the store open, without starting queue workers."""
    services = build_services()
    await services.store.initialize()
    try:
        return await action(services)
    finally:
        await services.store.close()


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version and exit')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, version, verbose):
    """
    YouTube Trust Check

    Summaries, trust scores and claim spot-checks for YouTube videos.
    """
    if version:
        click.echo(f"trustcheck version {__version__}")
        return

    _configure_logging(verbose)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option('--host', default='127.0.0.1', help='Bind address')
@click.option('--port', default=8000, type=int, help='Bind port')
@click.option('--reload', is_flag=True, help='Reload on code changes (development only)')
def serve(host: str, port: int, reload: bool):
    """Start the HTTP API."""
    import uvicorn

    click.echo(f"Starting API on http://{host}:{port}")
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


@cli.command('init-db')
@click.option('--reset', is_flag=True, help='Drop all tables first (deletes every job and result)')
def init_db(reset: bool):
    """Create the database tables."""
    settings = get_settings()
    if reset:
        click.confirm('Drop all tables and recreate them?', abort=True)

    async def create():
        factory = reset_database if reset else create_database
        manager = await factory(settings.database_url)
        await manager.close()

    asyncio.run(create())
    click.echo(f"Database initialized at {settings.database_url}")


@cli.command()
@click.argument('url')
def analyze(url: str):
    """Submit URL and run the pipeline in this process, printing the result."""

    async def run(services: Services):
        queue = services.queue
        queue.start()
        try:
            submission = await services.gateway.submit(url)
            click.echo(f"Job {submission.job_id}: {submission.status.value}", err=True)
            await queue.join()
        finally:
            await queue.stop()
        return await services.reader.get_result(submission.job_id)

    try:
        result = asyncio.run(_with_services(run))
    except InvalidInput as e:
        raise click.BadParameter(e.message, param_hint='URL')

    _echo_json(result)
    if result and result["status"] == "FAILED":
        sys.exit(1)


@cli.command()
@click.argument('job_id')
def status(job_id: str):
    """Show the current view of a job."""
    result = asyncio.run(_with_services(lambda services: services.reader.get_result(job_id)))
    if result is None:
        click.echo(f"Job {job_id} not found", err=True)
        sys.exit(1)
    _echo_json(result)


@cli.command()
@click.argument('job_id')
def retry(job_id: str):
    """Re-run the analysis of a finished job on its cached transcript."""
    try:
        analysis = asyncio.run(_with_services(lambda services: services.orchestrator.retry_analysis(job_id)))
    except JobNotFound:
        click.echo(f"Job {job_id} not found", err=True)
        sys.exit(1)
    except (JobBusy, InvalidInput) as e:
        click.echo(f"Cannot retry: {e}", err=True)
        sys.exit(1)
    except PipelineError as e:
        click.echo(f"Retry failed, previous result kept: {e.to_job_message()}", err=True)
        sys.exit(1)

    click.echo(f"Retry completed: trust score {analysis.trust_score} ({analysis.language})")


@cli.command()
def stuck():
    """List jobs stuck in RUNNING or PENDING."""
    settings = get_settings()
    report = asyncio.run(_with_services(lambda services: stuck_jobs_report(
        services.store, settings.stale_running_minutes, settings.stale_pending_minutes
    )))
    _echo_json(report)


@cli.command('mark-failed')
@click.argument('job_ids', nargs=-1, required=True)
@click.confirmation_option(prompt='Force these jobs to FAILED?')
def mark_failed(job_ids: Tuple[str, ...]):
    """Force the given PENDING/RUNNING jobs to FAILED."""
    updated = asyncio.run(_with_services(lambda services: mark_jobs_failed(services.store, list(job_ids))))
    click.echo(f"Marked {updated} of {len(job_ids)} jobs as failed")


if __name__ == '__main__':
    cli()
