from __future__ import annotations
import os
import sys
import typer
from rich import print
from dotenv import load_dotenv

from .config import CONFIG_FILENAME, load_config, setup_logging, write_default_config
from .errors import ConfigError
from .runtime import Agent
from .repl import repl

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(add_completion=False)


def _load(config_path: str | None, debug: bool):
    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)
    config.debug = config.debug or debug
    setup_logging(config.debug, config.log_directory)
    return config


@app.command()
def init(path: str = typer.Option(CONFIG_FILENAME, help="Where to write the config file"),
         force: bool = typer.Option(False, help="Overwrite an existing file")):
    """Write a crkdrc.json with default settings."""
    if os.path.exists(path) and not force:
        print(f"[yellow]{path} already exists, use --force to overwrite[/yellow]")
        raise typer.Exit(code=1)
    write_default_config(path)
    print(f"[green]Wrote {path}[/green]")


@app.command()
def models(config_path: str = typer.Option(None, "--config", help="Path to crkdrc.json")):
    """Show phase models and the auto-scaling tiers."""
    config = _load(config_path, False)
    print(f"[bold]discovery[/bold] -> {config.discovery_model}")
    print(f"[bold]strategy[/bold]  -> {config.strategy_model}")
    print(f"[bold]execute[/bold]   -> {config.execute_model}")
    state = "on" if config.auto_scaler else "off"
    print(f"\n[bold]auto scaling[/bold] ({state})")
    for i, tier in enumerate(config.auto_scale_available_models):
        window = config.context_windows.get(tier.id, config.default_context_window)
        print(f"  {i}. {tier.id}  writes<{tier.max_write_tries} global<{tier.max_global_tries}  ctx={window:,}")


@app.command()
def run(goal: str = typer.Argument(None, help="Task for the agent; omit for an interactive session"),
        repo: str = typer.Option(".", help="Path to the project root"),
        config_path: str = typer.Option(None, "--config", help="Path to crkdrc.json"),
        max_rounds: int = typer.Option(None, help="Max model round trips"),
        no_stream: bool = typer.Option(False, "--no-stream", help="Wait for complete responses"),
        debug: bool = typer.Option(False, help="Write a debug log")):
    """Run the agent on a task."""
    if not os.path.isdir(repo):
        raise typer.BadParameter("repo must be a directory")
    config = _load(config_path or os.path.join(repo, CONFIG_FILENAME), debug)
    if no_stream:
        config.stream = False

    try:
        agent = Agent(config, repo)
    except ConfigError as e:
        print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)

    if goal is None:
        repl(config, repo=repo, agent=agent)
        return
    result = agent.run_sync(goal, max_rounds=max_rounds)
    if result.status not in ("completed", "awaiting_user"):
        raise typer.Exit(code=1)


def main():
    # Bare arguments default to 'run'
    if len(sys.argv) == 1 or (len(sys.argv) > 1 and sys.argv[1] not in ['init', 'models', 'run', '--help']):
        sys.argv.insert(1, 'run')
    app()


if __name__ == "__main__":
    main()
