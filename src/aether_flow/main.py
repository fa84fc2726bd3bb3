"""CLI entrypoint for aether-flow."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from aether_flow import __version__
from aether_flow.config import SUPPORTED_AGENTS
from aether_flow.controllers import (
    AgentAddCommand,
    AgentListCommand,
    MissionCliController,
    MissionDeleteCommand,
    MissionExportCommand,
    MissionInspectCommand,
    MissionListCommand,
    MissionPlanCommand,
    MissionRunCommand,
)
from aether_flow.engine.services import CoolingDownError
from aether_flow.gateway.base import GatewayError
from aether_flow.gateway.routing import SUPPORTED_PROFILES

click.rich_click.USE_MARKDOWN = True
MISSION_CONTROLLER = MissionCliController()

_Command = TypeVar("_Command")


@click.group()
@click.version_option(version=__version__, prog_name="aether-flow")
def aether_flow() -> None:
    """Aether flow: plan missions with an LLM and run them task by task."""


@aether_flow.group()
def mission() -> None:
    """Mission planning and orchestration commands."""


@mission.command("plan")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--goal", required=True, help="Natural-language mission goal.")
@click.option(
    "--branching-factor",
    type=click.IntRange(min=2),
    default=None,
    help="Maximum children per decomposition. Defaults to AETHER_BRANCHING_FACTOR.",
)
def mission_plan(db_path: Path | None, goal: str, branching_factor: int | None) -> None:
    """Plan a new mission from a goal and store it as an idle flow."""

    _run(
        MISSION_CONTROLLER.plan,
        MissionPlanCommand(db_path=db_path, goal=goal, branching_factor=branching_factor),
    )


@mission.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--flow-id", required=True, help="Mission flow id.")
@click.option(
    "--max-steps",
    type=click.IntRange(min=1),
    default=None,
    help="Pause after this many loop steps.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Pause after this many consecutive idle polls (default: keep polling).",
)
def mission_run(
    db_path: Path | None,
    flow_id: str,
    max_steps: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run the orchestration loop until the mission completes or pauses.

    Press Ctrl+C to pause after the current step.
    """

    _run(
        MISSION_CONTROLLER.run,
        MissionRunCommand(
            db_path=db_path,
            flow_id=flow_id,
            max_steps=max_steps,
            max_idle_polls=max_idle_polls,
        ),
    )


@mission.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="How many missions to show.",
)
def mission_list(db_path: Path | None, limit: int) -> None:
    """List missions, most recently updated first."""

    _run(MISSION_CONTROLLER.list_missions, MissionListCommand(db_path=db_path, limit=limit))


@mission.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--flow-id", required=True, help="Mission flow id.")
def mission_inspect(db_path: Path | None, flow_id: str) -> None:
    """Show a mission's task tree, statuses and telemetry."""

    _run(MISSION_CONTROLLER.inspect, MissionInspectCommand(db_path=db_path, flow_id=flow_id))


@mission.command("export")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--flow-id", required=True, help="Mission flow id.")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write the JSON report here instead of stdout.",
)
def mission_export(db_path: Path | None, flow_id: str, output_path: Path | None) -> None:
    """Export a mission with every task result as a JSON project report."""

    _run(
        MISSION_CONTROLLER.export,
        MissionExportCommand(db_path=db_path, flow_id=flow_id, output_path=output_path),
    )


@mission.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--flow-id", required=True, help="Mission flow id.")
def mission_delete(db_path: Path | None, flow_id: str) -> None:
    """Delete a mission and its tasks."""

    _run(MISSION_CONTROLLER.delete, MissionDeleteCommand(db_path=db_path, flow_id=flow_id))


@aether_flow.group()
def agents() -> None:
    """Agent profile commands."""


@agents.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def agents_list(db_path: Path | None) -> None:
    """List agent profiles used to execute tasks."""

    _run(MISSION_CONTROLLER.list_agents, AgentListCommand(db_path=db_path))


@agents.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Display name.")
@click.option("--role", required=True, help="Role matched against task roles.")
@click.option("--system-prompt", required=True, help="Persona instructions for execution.")
@click.option(
    "--agent",
    type=click.Choice(SUPPORTED_AGENTS),
    default=None,
    help="CLI agent override for this profile.",
)
@click.option(
    "--model-profile",
    type=click.Choice(SUPPORTED_PROFILES),
    default=None,
    help="Model profile override for this profile.",
)
@click.option("--model", default=None, help="Explicit model id override.")
def agents_add(  # noqa: PLR0913
    db_path: Path | None,
    name: str,
    role: str,
    system_prompt: str,
    agent: str | None,
    model_profile: str | None,
    model: str | None,
) -> None:
    """Register an agent profile."""

    _run(
        MISSION_CONTROLLER.add_agent,
        AgentAddCommand(
            db_path=db_path,
            name=name,
            role=role,
            system_prompt=system_prompt,
            agent=agent,
            model_profile=model_profile,
            model=model,
        ),
    )


def _run(handler: Callable[[_Command], list[str]], command: _Command) -> None:
    try:
        lines = handler(command)
    except (CoolingDownError, GatewayError, LookupError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    aether_flow()
