"""CLI commands for running sirai sessions and inspecting task history."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .config import DEFAULT_CONFIG_NAME, AppConfig, ConfigError, load_config, write_default_config
from .models import ModelConfigurationError, ModelRouter, TranscriptWriter
from .planning.context_profile import find_project_root
from .planning.history import TaskHistory
from .session import SessionAbortedError, SessionContext, SessionController, SessionServices
from .tools.interaction import Prompter, TyperPrompter

APP_HELP = "sirai: plan, execute and validate code changes with an LLM."

app = typer.Typer(help=APP_HELP)

LOGGER = logging.getLogger(__name__)

_CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the sirai configuration file.",
)
_REMOTE_OPTION = typer.Option(
    True,
    "--use-remote/--no-use-remote",
    help="Call the Responses API instead of the offline model (requires an API key).",
)
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config: str) -> AppConfig:
    try:
        return load_config(Path(config))
    except ConfigError as error:
        typer.echo(f"Failed to load configuration: {error}", err=True)
        raise typer.Exit(code=1) from error


def _build_router(config: AppConfig, *, use_remote: bool) -> ModelRouter:
    """Create the model router and make sure the default client can be built."""
    root = find_project_root(Path.cwd())
    router = ModelRouter(
        config.models,
        transcripts=TranscriptWriter(config.resolve(root, config.paths.logs)),
        use_remote=use_remote,
    )
    try:
        router.default()
    except ModelConfigurationError as error:
        typer.echo(f"Failed to initialize the language model: {error}", err=True)
        typer.echo("Set SIRAI_API_KEY or OPENAI_API_KEY, or pass --no-use-remote.", err=True)
        raise typer.Exit(code=1) from error
    return router


def _services(config: str, use_remote: bool, prompter: Optional[Prompter] = None) -> SessionServices:
    app_config = _load(config)
    router = _build_router(app_config, use_remote=use_remote)
    return SessionServices.build(app_config, router, prompter or TyperPrompter())


def _run_session(services: SessionServices, *, prompt: Optional[str], one_shot: bool) -> None:
    context = SessionContext(services=services, one_shot=one_shot, pending_input=prompt)
    try:
        SessionController(context).run()
    except SessionAbortedError as error:
        typer.echo(f"Session aborted: {error}", err=True)
        raise typer.Exit(code=1) from error
    except KeyboardInterrupt:
        typer.echo("\nInterrupted.")
    finally:
        LOGGER.debug(services.router.usage_report())


@app.command()
def chat(
    prompt: Optional[str] = typer.Argument(None, help="Optional first request for the session."),
    config: str = _CONFIG_OPTION,
    use_remote: bool = _REMOTE_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Start an interactive session."""
    _configure_logging(verbose)
    services = _services(config, use_remote)
    services.prompter.show("sirai chat. Type /help for commands, /exit to quit.")
    _run_session(services, prompt=prompt, one_shot=False)


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Request to plan, execute and validate."),
    config: str = _CONFIG_OPTION,
    use_remote: bool = _REMOTE_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Handle a single request and exit."""
    _configure_logging(verbose)
    _run_session(_services(config, use_remote), prompt=prompt, one_shot=True)


@app.command()
def plan(
    prompt: str = typer.Argument(..., help="Request to plan."),
    config: str = _CONFIG_OPTION,
    use_remote: bool = _REMOTE_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Print a task plan without executing it."""
    _configure_logging(verbose)
    services = _services(config, use_remote)
    project = services.project
    planner = services.planner
    profile = planner.create_context_profile(project.project_root, project.current_directory)
    task_plan = planner.create_task_plan(prompt, profile)
    assessment = planner.assess_plan(
        task_plan, profile, prior_success_rate=services.history.prior_success_rate()
    )
    typer.echo(planner.get_explanation(task_plan, assessment))
    typer.echo(services.router.usage_report())


@app.command()
def history(
    clear: bool = typer.Option(False, "--clear", help="Delete the stored task history."),
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Number of tasks to list."),
    config: str = _CONFIG_OPTION,
) -> None:
    """List or clear completed tasks."""
    app_config = _load(config)
    root = find_project_root(Path.cwd())
    store = TaskHistory(
        app_config.resolve(root, app_config.history.path),
        max_tasks=app_config.history.max_tasks,
    )
    if clear:
        store.clear()
        typer.echo("Task history cleared.")
        return
    typer.echo(store.summary(limit=limit))


@app.command()
def init(
    config: str = _CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; pass --force to overwrite it.", err=True)
        raise typer.Exit(code=1)
    write_default_config(config_path)
    typer.echo(f"Wrote default configuration to {config_path}")


def main() -> None:  # pragma: no cover - console entry point
    app()


__all__ = ["app", "main"]
