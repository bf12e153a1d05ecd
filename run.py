#!/usr/bin/env python3
"""
Relay Entry Script.

Runs the relay server and its maintenance actions: health checks,
configuration dump, test runs.

Usage:
    python run.py --help
    python run.py --action server --verbose
    python run.py --action health --debug
    python run.py --action config
    python run.py --action test --test-type unit
"""

import subprocess
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Ensure project root is in path for absolute imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from voicerelay.backend.core.logging import get_logger, setup_logging

console = Console()

CLIENTS = (
    ("Browser", "http://<host>:<port>/"),
    ("Terminal", "python tui.py"),
    ("One-shot", "python chat.py --file question.wav"),
)


def validate_project_root() -> Path:
    """Exit unless .project_root sits next to this script."""
    if not (PROJECT_ROOT / ".project_root").exists():
        click.echo(
            click.style("Error: .project_root not found. Run from project root.", fg="red"),
            err=True,
        )
        sys.exit(1)
    return PROJECT_ROOT


@click.command()
@click.option(
    "--action",
    type=click.Choice(["server", "health", "config", "test", "info"]),
    default="info",
    help="What to do (default: info).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at INFO.")
@click.option("--debug", "-d", is_flag=True, help="Log at DEBUG.")
@click.option("--host", default=None, help="Bind address; overrides application.yaml (server).")
@click.option("--port", default=None, type=int, help="Bind port; overrides application.yaml (server).")
@click.option("--reload", is_flag=True, help="Restart uvicorn on code changes (server).")
@click.option(
    "--test-type",
    type=click.Choice(["all", "unit", "integration"]),
    default="all",
    help="Which suite to run (test).",
)
@click.option("--coverage", is_flag=True, help="Collect coverage for the voicerelay package (test).")
def main(
    action: str,
    verbose: bool,
    debug: bool,
    host: str | None,
    port: int | None,
    reload: bool,
    test_type: str,
    coverage: bool,
) -> None:
    """
    Realtime Voice Relay Entry Point.

    Serves /ws-client and the browser client, or checks that the relay
    is configured well enough to reach the realtime API.

    Examples:

        python run.py --action server --reload --verbose

        python run.py --action health

        python run.py --action test --test-type unit --coverage
    """
    validate_project_root()

    log_level = "DEBUG" if debug else "INFO" if verbose else "WARNING"
    setup_logging(level=log_level, format_type="console")
    logger = get_logger(__name__)
    logger.debug("Running action", extra={"action": action, "log_level": log_level})

    actions = {
        "server": lambda: run_server(logger, host, port, reload),
        "health": lambda: check_health(logger),
        "config": lambda: show_config(logger),
        "test": lambda: run_tests(logger, test_type, coverage),
        "info": lambda: show_info(logger),
    }
    actions[action]()


def run_server(logger, host: str | None, port: int | None, reload: bool) -> None:
    """Start the relay under uvicorn."""
    from voicerelay.backend.core.config import get_app_config

    try:
        app_config = get_app_config()
    except (FileNotFoundError, ValueError) as e:
        logger.error("Could not load configuration", extra={"error": str(e)})
        click.echo(click.style(f"Error loading configuration: {e}", fg="red"), err=True)
        sys.exit(1)

    server = app_config.application.server
    bind_host = host or server.host
    bind_port = port or server.port
    ws_path = app_config.realtime.client.path

    cmd = [
        sys.executable, "-m", "uvicorn", "voicerelay.backend.main:app",
        "--host", bind_host,
        "--port", str(bind_port),
    ]
    if reload:
        cmd.append("--reload")

    logger.info("Launching uvicorn", extra={"host": bind_host, "port": bind_port, "reload": reload})
    click.echo(f"Relay socket: ws://{bind_host}:{bind_port}{ws_path}")
    click.echo(f"Browser client: http://{bind_host}:{bind_port}/")
    click.echo("Ctrl+C stops the relay; open sessions are dropped.\n")

    try:
        subprocess.run(cmd, check=True)
    except KeyboardInterrupt:
        logger.info("Relay stopped")
    except subprocess.CalledProcessError as e:
        logger.error("uvicorn exited with an error", extra={"exit_code": e.returncode})
        sys.exit(e.returncode)


def collect_health_checks(logger) -> list[tuple[str, bool, str | None]]:
    """
    Offline checks: everything a relay session needs short of the network.

    Returns:
        (name, passed, detail) per check. Stops early when a later check
        could not run meaningfully.
    """
    checks: list[tuple[str, bool, str | None]] = []

    try:
        from voicerelay.backend.core.config import get_app_config, get_settings, get_upstream_url
        from voicerelay.backend.services.relay import RealtimeRelay  # noqa: F401
    except ImportError as e:
        logger.error("Relay modules failed to import", extra={"error": str(e)})
        return [("Core imports", False, str(e))]
    checks.append(("Core imports", True, None))

    try:
        app_config = get_app_config()
    except (FileNotFoundError, ValueError) as e:
        logger.error("Settings failed validation", extra={"error": str(e)})
        checks.append(("YAML configuration", False, str(e)))
        return checks
    checks.append(("YAML configuration", True, f"App: {app_config.application.name}"))

    if get_settings().openai_api_key:
        checks.append(("OpenAI API key", True, None))
    else:
        logger.warning("OpenAI API key not configured")
        checks.append(("OpenAI API key", False, "OPENAI_API_KEY is not set in config/.env"))

    url = get_upstream_url()
    checks.append(("Upstream URL", url.startswith(("ws://", "wss://")), url))

    try:
        from voicerelay.backend.main import create_app
        title = create_app().title
    except (ImportError, RuntimeError) as e:
        logger.error("FastAPI app failed", extra={"error": str(e)})
        checks.append(("FastAPI application", False, str(e)))
    else:
        checks.append(("FastAPI application", True, f"Title: {title}"))

    try:
        from voicerelay.client.audio import encode_for_upstream  # noqa: F401
    except ImportError as e:
        logger.error("Audio pipeline failed to import", extra={"error": str(e)})
        checks.append(("Client audio pipeline", False, str(e)))
    else:
        checks.append(("Client audio pipeline", True, None))

    return checks


def check_health(logger) -> None:
    """Print the offline checks as a table."""
    checks = collect_health_checks(logger)

    table = Table(title="Health Check Results", show_header=True)
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Details", overflow="fold")
    for name, passed, detail in checks:
        status = "[green]✓ PASS[/green]" if passed else "[red]✗ FAIL[/red]"
        table.add_row(name, status, detail or "-")
    console.print(table)

    if all(passed for _, passed, _ in checks):
        console.print("\n[green]All checks passed![/green]")
    else:
        console.print("\n[yellow]Some checks failed. See details above.[/yellow]")
        console.print("[dim]The OpenAI API key is read from config/.env or the environment.[/dim]")


def _echo_section(title: str, values: dict, indent: int = 2) -> None:
    if title:
        click.echo(f"\n{title}")
        click.echo("-" * 40)
    pad = " " * indent
    for key, value in values.items():
        if isinstance(value, dict):
            click.echo(f"{pad}{key}:")
            _echo_section("", value, indent + 2)
        else:
            click.echo(f"{pad}{key}: {value}")


def show_config(logger) -> None:
    """Dump the validated YAML settings. Secrets are never printed."""
    from voicerelay.backend.core.config import SECTIONS, get_app_config

    try:
        app_config = get_app_config()
    except (FileNotFoundError, ValueError) as e:
        logger.error("Failed to load configuration", extra={"error": str(e)})
        click.echo(click.style(f"Error loading configuration: {e}", fg="red"))
        sys.exit(1)

    titles = {
        "application": "Application Settings",
        "realtime": "Realtime Settings",
        "logging": "Logging Settings",
        "features": "Feature Flags",
    }

    click.echo("Relay Configuration:")
    for name, (_, filename) in SECTIONS.items():
        values = getattr(app_config, name).model_dump()
        if name == "realtime":
            instructions = values["session"]["instructions"]
            if len(instructions) > 60:
                values["session"]["instructions"] = instructions[:60] + " ..."
        _echo_section(f"{titles[name]} (from {filename}):", values)


def run_tests(logger, test_type: str, coverage: bool) -> None:
    """Run pytest on the selected suite and exit with its status."""
    targets = {"unit": "tests/unit", "integration": "tests/integration", "all": "tests/"}
    cmd = [sys.executable, "-m", "pytest", targets[test_type], "-v"]
    if coverage:
        cmd.extend(["--cov=voicerelay", "--cov-report=term-missing"])

    logger.info("Running tests", extra={"type": test_type, "coverage": coverage})
    click.echo(f"Running: {' '.join(cmd)}\n")

    try:
        result = subprocess.run(cmd)
    except FileNotFoundError:
        logger.error("pytest not found. Install with: pip install -e '.[test]'")
        sys.exit(1)
    sys.exit(result.returncode)


def show_info(logger) -> None:
    """What the relay is and how to reach it."""
    from voicerelay.backend.core.config import get_app_config

    try:
        application = get_app_config().application
        header = f"[bold]{application.name}[/bold] v{application.version}\n{application.description}"
    except (FileNotFoundError, ValueError):
        header = "[bold]Realtime Voice Relay[/bold]"
    console.print(Panel(header, title="Realtime Voice Relay"))

    actions = Table(title="Available Actions:", show_header=False, box=None)
    actions.add_row("--action server", "Serve /ws-client and the browser client")
    actions.add_row("--action health", "Offline checks: imports, settings, API key")
    actions.add_row("--action config", "Print validated settings")
    actions.add_row("--action test", "Run the test suite")
    actions.add_row("--action info", "Show this information")
    actions.add_row("--verbose, -v / --debug, -d", "Log at INFO / DEBUG")
    console.print(actions)

    clients = Table(title="Clients:", show_header=False, box=None)
    for name, how in CLIENTS:
        clients.add_row(name, how)
    console.print(clients)

    console.print("\nExamples:")
    console.print("  python run.py --action server --reload --verbose")
    console.print("  python run.py --action test --test-type unit --coverage")
    logger.debug("Info displayed")


if __name__ == "__main__":
    main()
