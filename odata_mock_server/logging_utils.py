"""Structured logging helpers for the OData mock server."""

from __future__ import annotations

import logging
import os
import sys
from io import StringIO
from typing import Any, get_args

import structlog
from rich.console import Console
from rich.text import Text

from .models import LogFormat, LoggingConfig

LOGGER_NAME = "odata_mock_server"
LOG_FORMAT_ENV = "ODATA_MOCK_LOG_FORMAT"

# Fields that carry multi-line payloads are printed below the event line.
_BLOCK_FIELDS = ("request_body", "response_body")


class RichConsoleRenderer:
    """structlog renderer using Rich for readable request/response traces."""

    def __init__(self, width: int = 200) -> None:
        self.width = width
        self.level_styles = {
            "debug": "dim cyan",
            "info": "cyan",
            "warning": "yellow",
            "error": "bold red",
            "critical": "bold white on red",
        }

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = event_dict.pop("event", "")
        blocks = {key: event_dict.pop(key) for key in _BLOCK_FIELDS if key in event_dict}

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(" ")
        text.append(f"[{level:<8}]", style=self.level_styles.get(level, "white"))
        text.append(" ")
        text.append(event, style="bold white")

        padding = max(0, 32 - len(event))
        if padding > 0 and event_dict:
            text.append(" " * padding)

        items = [(key, value) for key, value in sorted(event_dict.items()) if key not in ("color_message", "stack", "exception")]
        for i, (key, value) in enumerate(items):
            text.append(f"{key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
            if i < len(items) - 1:
                text.append(" ")

        for key, value in blocks.items():
            if value:
                text.append(f"\n  {key}:\n", style="dim white")
                text.append(str(value), style="white")
        if "exception" in event_dict:
            text.append("\n" + str(event_dict["exception"]), style="red")

        buffer = StringIO()
        console = Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False)
        console.print(text, end="")
        return buffer.getvalue()


def resolve_log_format(settings: LoggingConfig) -> LogFormat:
    """Configured format, else ``$ODATA_MOCK_LOG_FORMAT``, else the rich console."""

    if settings.format:
        return settings.format
    env_value = os.environ.get(LOG_FORMAT_ENV, "").strip().lower()
    if env_value in get_args(LogFormat):
        return env_value  # type: ignore[return-value]
    return "console"


def configure_logging(settings: LoggingConfig | None = None) -> structlog.stdlib.BoundLogger:
    """Configure structlog for the mock server and return its root logger.

    Pass ``config.logging`` of a loaded :class:`MockServerConfig`; without
    settings the defaults (INFO, format from the environment) apply.
    """

    settings = settings or LoggingConfig()
    normalized_level = getattr(logging, settings.level, logging.INFO)
    logging.basicConfig(
        level=normalized_level,
        stream=sys.stdout,
        format="%(message)s",
        force=True,
    )

    log_format = resolve_log_format(settings)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.format_exc_info,
    ]

    if log_format == "console":
        processors.append(RichConsoleRenderer())
    elif log_format == "plain":
        # No colors, for CI and other non-interactive output
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(normalized_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(LOGGER_NAME)
