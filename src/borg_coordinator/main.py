"""CLI entrypoint for borg-coordinator."""

from collections.abc import Iterator
from contextlib import contextmanager

import rich_click as click

from borg_coordinator import __version__
from borg_coordinator.coordinator.controllers import (
    CoordinatorCliController,
    ListInstancesCommand,
    ListTasksCommand,
    QueueClearCommand,
    QueueStatsCommand,
    RunCommand,
    SubmitCommand,
)
from borg_coordinator.coordinator.errors import ConfigurationError, CoordinatorError
from borg_coordinator.coordinator.models import TaskPriority, TaskStatus, TaskType

click.rich_click.USE_MARKDOWN = True
COORDINATOR_CONTROLLER = CoordinatorCliController()

_STORE_URL_OPTION = click.option(
    "--store-url",
    default=None,
    help="SQLAlchemy URL of the durable store (defaults to BORG_STORE_URL).",
)


@click.group()
@click.version_option(version=__version__, prog_name="borg-coordinator")
def borg_coordinator() -> None:
    """Coordinate a team of role-tagged agent instances over a priority task queue."""


@borg_coordinator.command("run")
@_STORE_URL_OPTION
@click.option("--agent-path", default=None, help="Agent executable used by every instance.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level (defaults to BORG_LOG_LEVEL).",
)
@click.option("--no-team", is_flag=True, default=False, help="Skip default team bootstrap.")
@click.option(
    "--duration",
    "duration_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Stop after this many seconds instead of waiting for Ctrl+C.",
)
def run(
    store_url: str | None,
    agent_path: str | None,
    log_level: str | None,
    no_team: bool,
    duration_seconds: float | None,
) -> None:
    """Bootstrap the team and drain the task queue until interrupted."""

    with _cli_errors():
        _emit_lines(
            COORDINATOR_CONTROLLER.run(
                RunCommand(
                    store_url=store_url,
                    agent_path=agent_path,
                    log_level=log_level,
                    bootstrap_team=not no_team,
                    duration_seconds=duration_seconds,
                ),
            ),
        )


@borg_coordinator.command("submit")
@_STORE_URL_OPTION
@click.option(
    "--type",
    "task_type",
    type=click.Choice([item.value for item in TaskType]),
    required=True,
    help="Task type; drives role routing.",
)
@click.option("--description", required=True, help="What the agent should do.")
@click.option(
    "--priority",
    type=click.Choice([item.value for item in TaskPriority]),
    default=TaskPriority.MEDIUM.value,
    show_default=True,
)
@click.option(
    "--depends-on",
    "dependencies",
    multiple=True,
    help="Task id this task depends on. Can be repeated.",
)
@click.option("--instance-id", default=None, help="Route to this instance only.")
def submit(  # noqa: PLR0913
    store_url: str | None,
    task_type: str,
    description: str,
    priority: str,
    dependencies: tuple[str, ...],
    instance_id: str | None,
) -> None:
    """Queue a task for a running coordinator."""

    with _cli_errors():
        _emit_lines(
            COORDINATOR_CONTROLLER.submit(
                SubmitCommand(
                    store_url=store_url,
                    task_type=TaskType(task_type),
                    description=description,
                    priority=TaskPriority(priority),
                    dependencies=dependencies,
                    target_instance_id=instance_id,
                ),
            ),
        )


@borg_coordinator.command("queue-stats")
@_STORE_URL_OPTION
def queue_stats(store_url: str | None) -> None:
    """Show queued task counts per priority."""

    with _cli_errors():
        _emit_lines(COORDINATOR_CONTROLLER.queue_stats(QueueStatsCommand(store_url=store_url)))


@borg_coordinator.command("queue-clear")
@_STORE_URL_OPTION
@click.option(
    "--priority",
    type=click.Choice([item.value for item in TaskPriority]),
    default=None,
    help="Clear one priority only; all priorities when omitted.",
)
def queue_clear(store_url: str | None, priority: str | None) -> None:
    """Drop queued tasks."""

    with _cli_errors():
        _emit_lines(
            COORDINATOR_CONTROLLER.queue_clear(
                QueueClearCommand(
                    store_url=store_url,
                    priority=None if priority is None else TaskPriority(priority),
                ),
            ),
        )


@borg_coordinator.command("tasks")
@_STORE_URL_OPTION
@click.option(
    "--status",
    type=click.Choice([item.value for item in TaskStatus]),
    default=None,
    help="Only show tasks in this status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
)
def tasks(store_url: str | None, status: str | None, limit: int) -> None:
    """List persisted task snapshots, newest first."""

    with _cli_errors():
        _emit_lines(
            COORDINATOR_CONTROLLER.list_tasks(
                ListTasksCommand(
                    store_url=store_url,
                    status=None if status is None else TaskStatus(status),
                    limit=limit,
                ),
            ),
        )


@borg_coordinator.command("instances")
@_STORE_URL_OPTION
def instances(store_url: str | None) -> None:
    """List persisted instance snapshots."""

    with _cli_errors():
        _emit_lines(
            COORDINATOR_CONTROLLER.list_instances(ListInstancesCommand(store_url=store_url)),
        )


@borg_coordinator.command("roles")
def roles() -> None:
    """Print role capabilities, default configs and task routing."""

    _emit_lines(COORDINATOR_CONTROLLER.roles())


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (CoordinatorError, ConfigurationError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    borg_coordinator()
