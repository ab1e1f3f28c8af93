"""CLI entrypoint for the stub server."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from .config import load_settings
from .loader import load_rules
from .logging_utils import configure_logging
from .request_log import RequestLog
from .selector import RuleSelector
from .server import StubServerRunner, describe_rule, server_console_summary
from .storage import InMemoryRuleStore

app = typer.Typer(help="Answer HTTP requests with pre-configured responses chosen by matching rules.")


@app.command()
def serve(
    rule_files: list[Path] = typer.Argument(
        None,
        exists=True,
        readable=True,
        dir_okay=False,
        help="Rule files (JSON stream or YAML) loaded at startup.",
    ),
    host: Optional[str] = typer.Option(None, help="Bind host (env STUB_SERVER_HOST, default 0.0.0.0)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (env PORT, default 8080)."),
    log_level: Optional[str] = typer.Option(None, help="Log level (env STUB_SERVER_LOG_LEVEL, default info)."),
    log_format: Optional[str] = typer.Option(
        None,
        help="Log format: console, plain or json (env STUB_SERVER_LOG_FORMAT).",
    ),
    storage_timeout: Optional[float] = typer.Option(None, help="Seconds to wait for the rule store."),
    capture_capacity: Optional[int] = typer.Option(None, help="Number of captured requests kept."),
) -> None:
    """Load rule files and serve stub responses until interrupted."""

    try:
        settings = load_settings(
            host=host,
            port=port,
            rule_files=rule_files or [],
            log_level=log_level,
            log_format=log_format,
            storage_timeout=storage_timeout,
            capture_capacity=capture_capacity,
        )
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    logger = configure_logging(settings.log_level, settings.log_format)
    loaded = load_rules(settings.rule_files)
    store = InMemoryRuleStore(loaded.rules)
    selector = RuleSelector(store, storage_timeout=settings.storage_timeout)
    runner = StubServerRunner(
        selector,
        request_log=RequestLog(settings.capture_capacity),
        host=settings.host,
        port=settings.port,
    )

    runner.start()
    for line in server_console_summary(runner, loaded.rules):
        typer.echo(line)
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("shutdown_requested")
    finally:
        runner.stop()


@app.command()
def validate(
    rule_files: list[Path] = typer.Argument(
        ...,
        exists=True,
        readable=True,
        dir_okay=False,
        help="Rule files to check.",
    ),
) -> None:
    """Check rule files against the strict rule schema."""

    loaded = load_rules(rule_files)
    for rule in loaded.rules:
        typer.secho(f"ok    {describe_rule(rule)}", fg=typer.colors.GREEN)
    for error in loaded.errors:
        typer.secho(f"error {error}", fg=typer.colors.RED, err=True)
    typer.echo(f"{len(loaded.rules)} rule(s) loaded, {len(loaded.errors)} error(s)")
    if loaded.errors:
        raise typer.Exit(code=1)


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
