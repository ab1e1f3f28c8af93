"""Runtime settings for the stub server."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .output_config import LogFormat, get_log_format
from .request_log import DEFAULT_CAPACITY
from .selector import DEFAULT_STORAGE_TIMEOUT

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


class ServerSettings(BaseModel):
    """Validated settings consumed by the CLI and the runtime."""

    host: str = DEFAULT_HOST
    port: int = Field(DEFAULT_PORT, ge=0, le=65535)
    rule_files: list[Path] = Field(default_factory=list)
    log_level: str = "info"
    log_format: LogFormat = "console"
    storage_timeout: float = Field(DEFAULT_STORAGE_TIMEOUT, gt=0)
    capture_capacity: int = Field(DEFAULT_CAPACITY, gt=0)


def load_settings(**overrides: Any) -> ServerSettings:
    """Build settings with priority: explicit overrides > environment > defaults.

    ``None`` overrides are ignored so CLI options left unset fall through.
    """

    values: dict[str, Any] = {
        "host": os.getenv("STUB_SERVER_HOST", DEFAULT_HOST),
        "port": os.getenv("PORT", str(DEFAULT_PORT)),
        "log_level": os.getenv("STUB_SERVER_LOG_LEVEL", "info"),
        "log_format": get_log_format(overrides.pop("log_format", None)),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ServerSettings.model_validate(values)
