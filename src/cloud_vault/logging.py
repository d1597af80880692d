"""Structured logging for cloud-vault.

Every uploader logs through a logger bound with ``backend=<id>``, so one run
across several backends can be filtered per destination. Failures go through
:func:`log_failure`, which tags the event with the error kind the upload report
uses and honours ``advanced.suppress_errors``.

Credentials travel through these loggers as keyword context (Dropbox tokens,
S3 keys, FTP and WebDAV passwords, SSH passphrases) and are redacted before any
renderer sees them.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

import structlog

from cloud_vault.core.models import LogFormat

# Substrings of context keys whose values never reach a handler
_SENSITIVE_KEYS = frozenset({
    "password",
    "secret",
    "token",
    "passphrase",
    "access_key",
    "credential",
    "authorization",
})


def _redact_sensitive(
        _logger: logging.Logger,
        _method: str,
        event_dict: dict,
) -> dict:
    """Redact values of keys that look like secrets."""
    for key in event_dict:
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            event_dict[key] = "***REDACTED***"
    return event_dict


def setup_logging(
        level: str = "INFO",
        log_file: Path | None = None,
        log_format: LogFormat = LogFormat.CONSOLE,
) -> None:
    """Route structlog through stdlib handlers for a CLI run.

    Called once by the CLI callback and again after the config file is read,
    when ``[logging]`` names a log file. Console output follows *log_format*;
    the rotating file always gets JSON so upload reports can be grepped later.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Shared processors for structlog
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _redact_sensitive,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == LogFormat.JSON:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        # exc_info from log_failure becomes a structured list, not a string
        shared_processors.append(structlog.processors.dict_tracebacks)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Build a ProcessorFormatter for stdlib handlers
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(log_level)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # Transport libraries log every request at INFO; the uploaders already do
    for name in ("boto3", "botocore", "urllib3", "s3transfer", "httpx", "httpcore", "paramiko"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger; uploaders bind ``backend`` on top of it."""
    return structlog.get_logger(name)


def log_failure(
        logger: structlog.stdlib.BoundLogger,
        event: str,
        exc: BaseException,
        *,
        suppress_stack: bool = False,
        **context: object,
) -> None:
    """Log a caught exception, with its traceback unless *suppress_stack* is set."""
    kind = getattr(exc, "kind", "unknown")
    if suppress_stack:
        logger.error(event, error=str(exc), error_kind=kind, **context)
    else:
        logger.error(event, error=str(exc), error_kind=kind, exc_info=exc, **context)
