"""CLI entrypoint for slowquery."""

import logging
from pathlib import Path

import rich_click as click

from slowquery import __version__
from slowquery.engine.controllers import (
    DemoCommand,
    InspectJobCommand,
    JobsCliController,
    ListJobsCommand,
)

click.rich_click.USE_MARKDOWN = True
JOBS_CONTROLLER = JobsCliController()


@click.group()
@click.version_option(version=__version__, prog_name="slowquery")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def slowquery(verbose: bool) -> None:
    """Slow query job engine CLI."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@slowquery.command("demo")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", type=int, default=123, show_default=True, help="Report user id.")
@click.option(
    "--from-email",
    default="a@b.com",
    show_default=True,
    help="Sender address to report bounces for.",
)
@click.option(
    "--poll-interval",
    type=click.FloatRange(min=0.01),
    default=0.5,
    show_default=True,
    help="Seconds between status polls.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0.1),
    default=30.0,
    show_default=True,
    help="Give up polling after this many seconds.",
)
def demo(
    db_path: Path | None,
    user_id: int,
    from_email: str,
    poll_interval: float,
    timeout: float,
) -> None:
    """Submit the broadside bounce report and poll until it finishes."""

    _emit_lines(
        JOBS_CONTROLLER.run_demo(
            DemoCommand(
                db_path=db_path,
                user_id=user_id,
                from_email=from_email,
                poll_interval_seconds=poll_interval,
                timeout_seconds=timeout,
            ),
        ),
    )


@slowquery.group()
def jobs() -> None:
    """Job store inspection commands."""


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["queued", "in_progress", "success", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--app", "application", default=None, help="Optional application filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    status: str | None,
    application: str | None,
    limit: int,
) -> None:
    """List jobs, newest first."""

    _emit_lines(
        JOBS_CONTROLLER.list_jobs(
            ListJobsCommand(
                db_path=db_path,
                status=status,
                application=application,
                limit=limit,
            ),
        ),
    )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--request-id", required=True, help="Request id returned by submit.")
def jobs_inspect(db_path: Path | None, request_id: str) -> None:
    """Inspect one job with event history."""

    _emit_lines(
        JOBS_CONTROLLER.inspect_job(InspectJobCommand(db_path=db_path, request_id=request_id)),
    )


@jobs.command("poll")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--request-id", required=True, help="Request id returned by submit.")
def jobs_poll(db_path: Path | None, request_id: str) -> None:
    """Show the client-facing status of one job."""

    _emit_lines(
        JOBS_CONTROLLER.poll_job(InspectJobCommand(db_path=db_path, request_id=request_id)),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    slowquery()
