"""Command-line interface for klaxon."""

import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.logging import RichHandler

from klaxon.config import DispatcherConfig, build_dispatcher, load_config
from klaxon.exceptions import ConfigError

app = typer.Typer(
    name="klaxon",
    help="Send deduplicated alarms through configurable channels",
    add_completion=False,
)


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
            force=True,
        )


def _load(config_file: Path) -> DispatcherConfig:
    try:
        return load_config(config_file)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="send")
def send_cmd(
    message: Annotated[str, typer.Argument(help="Alarm text")],
    source: Annotated[
        Optional[str],
        typer.Option("--source", "-s", help="Alarm source"),
    ] = None,
    always: Annotated[
        bool,
        typer.Option("--always", help="Bypass deduplication"),
    ] = False,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Dispatcher configuration file (YAML or JSON)"),
    ] = None,
    drain_timeout: Annotated[
        float,
        typer.Option("--drain-timeout", help="Seconds to wait for channels to deliver"),
    ] = 10.0,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Send one alarm and wait for delivery."""
    _configure_logging(verbose)

    if config_file is None:
        config = DispatcherConfig(channels=[{"type": "console", "name": "console"}])
    else:
        config = _load(config_file)

    try:
        dispatcher = build_dispatcher(config)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    try:
        if always:
            dispatcher.send_alarm_always(message, source)
        else:
            dispatcher.send_alarm(message, source)

        # A one-shot process cannot wait out the buffer window.
        if dispatcher.aggregator is not None:
            dispatcher.aggregator.flush_all()

        delivered = dispatcher.drain(timeout=drain_timeout)
    finally:
        dispatcher.shutdown()

    if not delivered:
        typer.echo(f"Error: Channels did not finish within {drain_timeout}s", err=True)
        raise typer.Exit(1)


@app.command(name="status")
def status_cmd(
    config_file: Annotated[
        Path,
        typer.Option("--config", "-c", help="Dispatcher configuration file (YAML or JSON)"),
    ],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the status as JSON"),
    ] = False,
) -> None:
    """Show the dispatcher a configuration would build."""
    config = _load(config_file)

    try:
        dispatcher = build_dispatcher(config)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    try:
        status = dispatcher.status()
        channels = [
            {
                "name": getattr(channel, "name", type(channel).__name__),
                "min_resend_interval_ms": channel.min_resend_interval,
            }
            for channel in dispatcher.channels
        ]
    finally:
        dispatcher.shutdown()

    if as_json:
        typer.echo(json.dumps({**status.to_dict(), "channels": channels}, indent=2))
        return

    typer.echo(str(status))
    for channel in channels:
        typer.echo(f"  {channel['name']}: min resend {channel['min_resend_interval_ms']}ms")


@app.command(name="validate")
def validate_cmd(
    config_file: Annotated[Path, typer.Argument(help="Configuration file to check")],
) -> None:
    """Validate a configuration file."""
    try:
        config = load_config(config_file)
    except ConfigError as e:
        if e.errors:
            typer.echo(f"Invalid configuration: {config_file}", err=True)
            for error in e.errors:
                typer.echo(f"  - {error}", err=True)
        else:
            typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Configuration is valid: {len(config.channels)} channel(s)")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
