"""Structured logging helpers for the stub server."""

from __future__ import annotations

import logging
import sys
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

from .output_config import LogFormat

_HIDDEN_KEYS = ("color_message", "stack", "exception")


class RichConsoleRenderer:
    """structlog renderer printing aligned, colored events through Rich."""

    level_styles = {
        "debug": "dim cyan",
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "critical": "bold white on red",
    }

    def __init__(self, width: int = 200) -> None:
        self.width = width

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = str(event_dict.pop("event", ""))
        exception = event_dict.pop("exception", None)

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(" ")
        text.append(f"[{level:<8}]", style=self.level_styles.get(level, "white"))
        text.append(" ")
        text.append(event, style="bold white")

        pairs = [(key, value) for key, value in sorted(event_dict.items()) if key not in _HIDDEN_KEYS]
        if pairs:
            # Align key/value pairs of short event names.
            text.append(" " * max(1, 32 - len(event)))
        for index, (key, value) in enumerate(pairs):
            text.append(f"{key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
            if index < len(pairs) - 1:
                text.append(" ")
        if exception:
            text.append("\n")
            text.append(str(exception), style="red")

        buffer = StringIO()
        console = Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False)
        console.print(text, end="")
        return buffer.getvalue()


def configure_logging(log_level: str, log_format: LogFormat = "console") -> structlog.stdlib.BoundLogger:
    """Configure structlog for the stub server and return its logger."""

    normalized_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=normalized_level,
        stream=sys.stdout,
        format="%(message)s",
        force=True,
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.format_exc_info,
    ]
    if log_format == "console":
        processors.append(RichConsoleRenderer())
    elif log_format == "plain":
        # No colors, for CI and redirected output.
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(normalized_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("stub_server")
