"""Log output format configuration for the stub server."""

import os
from typing import Literal


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "STUB_SERVER_LOG_FORMAT"


def get_log_format(cli_override: str | None = None) -> LogFormat:
    """
    Get the log format with priority: CLI parameter > Environment variable > Default (console).

    Output format names are accepted too:
    - auto/rich -> console (with colors)
    - plain -> plain (no colors, simple text)
    - json -> json

    Args:
        cli_override: Optional CLI parameter value that takes precedence

    Returns:
        LogFormat value
    """
    for candidate in (cli_override, os.environ.get(ENV_VAR_NAME)):
        if not candidate:
            continue
        value = candidate.lower()
        if value in ("json", "console", "plain"):
            return value  # type: ignore[return-value]
        if value in ("auto", "rich"):
            return "console"

    return "console"
