from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import click

from deslop import __version__
from deslop.agent import AgentFactory, AgentSession, ClaudeCodeAgent, CursorAgent
from deslop.config import (
    MODEL_OPTIONS,
    ConfigPaths,
    DeslopConfig,
    create_project_config,
    load_config,
    load_global_config,
    save_global_config,
)
from deslop.credentials import CredentialStore, resolve_api_key
from deslop.errors import CredentialError, DeslopError
from deslop.learnings import LearningsStore
from deslop.orchestrator import RunOrchestrator
from deslop.runs import RunStore
from deslop.ui import TerminalUI, drive

logger = logging.getLogger(__name__)

API_KEY_URL = "https://cursor.com/settings/api"
MODEL_FIELDS = ("planning", "executing", "verification")


@dataclass(slots=True)
class Runtime:
    directory: Path
    config: DeslopConfig
    store: RunStore
    ui: TerminalUI
    orchestrator: RunOrchestrator


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


def _prompt_api_key(credentials: CredentialStore) -> str:
    click.secho("> deslop - API key required", fg="cyan", bold=True)
    click.echo(f"Get your Cursor API key from: {API_KEY_URL}")
    key = click.prompt("API key", hide_input=True).strip()
    if not key:
        raise CredentialError("An API key is required to run the cursor agent.")
    credentials.store_api_key(key)
    return key


def _build_agent_factory(
    config: DeslopConfig, directory: Path, credentials: CredentialStore
) -> AgentFactory:
    if config.agent.backend == "claude":

        def _claude(model: str) -> AgentSession:
            return ClaudeCodeAgent(model=model, working_directory=directory, binary=config.agent.binary)

        return _claude

    api_key = resolve_api_key(credentials) or _prompt_api_key(credentials)

    def _cursor(model: str) -> AgentSession:
        return CursorAgent(
            model=model,
            api_key=api_key,
            working_directory=directory,
            binary=config.agent.binary,
        )

    return _cursor


def _load_runtime(directory: Path, paths: ConfigPaths, credentials: CredentialStore) -> Runtime:
    config = load_config(directory, paths)
    agent_factory = _build_agent_factory(config, directory, credentials)
    store = RunStore.create(directory)
    ui = TerminalUI(directory)
    orchestrator = RunOrchestrator(
        directory,
        store,
        LearningsStore(directory),
        config,
        agent_factory,
        listener=ui,
    )
    return Runtime(
        directory=directory,
        config=config,
        store=store,
        ui=ui,
        orchestrator=orchestrator,
    )


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="deslop")
@click.option(
    "-d",
    "--directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Directory to analyze.",
)
@click.option("--verbose", is_flag=True, default=False, help="Log diagnostics to stderr.")
@click.pass_context
def cli(ctx: click.Context, directory: Path, verbose: bool) -> None:
    """Remove AI slop from your codebase."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.setdefault("paths", ConfigPaths.default())
    ctx.obj.setdefault("credentials", CredentialStore.default())
    if ctx.invoked_subcommand is not None:
        return

    directory = directory.resolve()
    try:
        runtime = _load_runtime(directory, ctx.obj["paths"], ctx.obj["credentials"])
    except DeslopError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        exit_code = asyncio.run(drive(runtime.orchestrator, runtime.ui))
    except DeslopError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        runtime.orchestrator.teardown()
    click.secho(f"Run artifacts: {runtime.store.run_dir}", dim=True)
    ctx.exit(exit_code)


@cli.command("init")
@click.pass_context
def init_command(ctx: click.Context) -> None:
    """Create a project-specific deslop.toml in the current directory."""
    directory = Path.cwd().resolve()
    try:
        path = create_project_config(directory, ctx.obj["paths"])
    except DeslopError as exc:
        raise click.ClickException(str(exc)) from exc
    click.secho("> deslop - Config Created", fg="green", bold=True)
    click.echo(f"Created {path.name} in current directory.")
    click.secho(f"Edit {path} to customize models for this project.", dim=True)


def _choose_model(field_name: str, current: str) -> str:
    click.echo(f"{field_name.capitalize()} model (current: {current})")
    for number, (name, label) in enumerate(MODEL_OPTIONS, start=1):
        click.echo(f"  {number}. {label} [{name}]")
    click.echo(f"  {len(MODEL_OPTIONS) + 1}. Custom...")
    choice = click.prompt(
        "Choose",
        type=click.IntRange(1, len(MODEL_OPTIONS) + 1),
        default=1,
    )
    if choice <= len(MODEL_OPTIONS):
        return MODEL_OPTIONS[choice - 1][0]
    return click.prompt("Model name", default=current).strip() or current


@cli.command("config")
@click.pass_context
def config_command(ctx: click.Context) -> None:
    """Update the global model configuration."""
    paths: ConfigPaths = ctx.obj["paths"]
    try:
        config = load_global_config(paths)
    except DeslopError as exc:
        raise click.ClickException(str(exc)) from exc

    for field_name in MODEL_FIELDS:
        current = getattr(config.models, field_name)
        setattr(config.models, field_name, _choose_model(field_name, current))

    path = save_global_config(paths, config)
    click.secho("> deslop - Config Saved", fg="green", bold=True)
    click.echo("Global model configuration has been updated.")
    click.secho(f"Saved to {path}", dim=True)


@cli.command("logout")
@click.pass_context
def logout_command(ctx: click.Context) -> None:
    """Remove the stored API key."""
    credentials: CredentialStore = ctx.obj["credentials"]
    credentials.delete_api_key()
    click.secho("> deslop - Logged Out", fg="green", bold=True)
    click.echo("API key has been removed from secure storage.")
