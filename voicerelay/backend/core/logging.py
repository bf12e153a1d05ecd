"""
Relay Logging.

structlog on top of the stdlib logging tree, configured from
config/settings/logging.yaml. Every process (server, TUI, chat CLI) calls
setup_logging once at startup and then uses get_logger(__name__).

JSON records carry:
    timestamp, level, logger, event, func_name, lineno
    source      - who produced the record: web, tui, cli, upstream, internal
    request_id  - bound by the HTTP middleware
    session_id  - bound for the lifetime of a relay session

Credentials never reach a handler: the redaction processor masks bearer
tokens and API keys wherever they appear in a record.

Usage:
    from voicerelay.backend.core.logging import get_logger, log_with_source

    logger = get_logger(__name__)
    logger.info("Frame forwarded", extra={"event_type": "response.create"})
    log_with_source(logger, "upstream", "info", "Connected", url=url)
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from voicerelay.backend.core.config import find_project_root, load_yaml_config

VALID_SOURCES = frozenset({"web", "tui", "cli", "upstream", "internal", "unknown"})

# Third-party loggers held at WARNING regardless of the configured level.
QUIET_LOGGERS = ("uvicorn.access", "websockets")

REDACTED = "[redacted]"
_SECRET_KEYS = frozenset({"api_key", "openai_api_key", "authorization", "additional_headers"})
_SECRET_PATTERN = re.compile(r"(Bearer\s+)?sk-[A-Za-z0-9_\-]{4,}")

_logging_config: dict[str, Any] | None = None


def _load_logging_config() -> dict[str, Any]:
    """
    Read logging.yaml once per process.

    Raises:
        FileNotFoundError: If logging.yaml does not exist
    """
    global _logging_config
    if _logging_config is None:
        _logging_config = load_yaml_config("logging.yaml")
    return _logging_config


def _resolve_log_path(configured_path: str) -> Path:
    return find_project_root() / configured_path


def _redact(values: dict[str, Any]) -> dict[str, Any]:
    """Masked copy of values. Nested dicts are copied, never masked in place."""
    masked: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(key, str) and key.lower() in _SECRET_KEYS:
            masked[key] = REDACTED
        elif isinstance(value, dict):
            masked[key] = _redact(value)
        elif isinstance(value, str) and "sk-" in value:
            masked[key] = _SECRET_PATTERN.sub(REDACTED, value)
        else:
            masked[key] = value
    return masked


def redact_secrets(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Mask credential-bearing fields and any OpenAI-style key found in strings."""
    event_dict.update(_redact(event_dict))
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            ],
        ),
        redact_secrets,
    ]


def _console_handler(renderer: str, pre_chain: list[Processor]) -> logging.Handler:
    if renderer == "console":
        processor: Processor = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        processor = structlog.processors.JSONRenderer()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=processor, foreign_pre_chain=pre_chain))
    return handler


def _file_handler(file_config: dict[str, Any], pre_chain: list[Processor]) -> logging.Handler:
    """JSONL file, rotated by size. Always JSON regardless of the console format."""
    log_path = _resolve_log_path(file_config["path"])
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        filename=str(log_path),
        maxBytes=file_config["max_bytes"],
        backupCount=file_config["backup_count"],
        encoding="utf-8",
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    enable_console: bool | None = None,
    enable_file_logging: bool | None = None,
) -> None:
    """
    Configure logging for this process.

    Arguments left as None fall back to logging.yaml. The TUI passes
    enable_console=False so records do not paint over the screen.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        format_type: 'json' or 'console' for the console handler
        enable_console: Write records to stdout
        enable_file_logging: Write JSONL records to the configured file
    """
    config = _load_logging_config()
    handlers_config = config["handlers"]

    log_level = getattr(logging, (level or config["level"]).upper())
    renderer = format_type or config["format"]
    console_on = handlers_config["console"]["enabled"] if enable_console is None else enable_console
    file_on = handlers_config["file"]["enabled"] if enable_file_logging is None else enable_file_logging

    pre_chain = _shared_processors()
    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if console_on:
        root_logger.addHandler(_console_handler(renderer, pre_chain))
    if file_on:
        root_logger.addHandler(_file_handler(handlers_config["file"], pre_chain))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def log_with_source(logger: Any, source: str, level: str, message: str, **kwargs: Any) -> None:
    """
    Log with an explicit ``source`` field.

    Relay sessions, the terminal client and the CLI log outside any HTTP
    request, so they name their source here.

    Raises:
        AttributeError: If level is not a valid log level
    """
    log_method = getattr(logger, level.lower())
    log_method(message, source=source, **kwargs)
