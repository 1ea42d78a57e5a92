"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

import structlog


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and route stdlib logging to ``stream`` (stdout by default).

    ``json_output=False`` swaps the JSON renderer for the console renderer,
    which is what the CLI uses on an interactive terminal.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    stream = stream or sys.stdout
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=stream.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ],
            ),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=stream, level=level)
    # botocore is chatty at INFO
    logging.getLogger("botocore").setLevel(max(level, logging.WARNING))


@contextmanager
def deployment_context(deployment_id: str, service: str) -> Iterator[None]:
    """Bind ``deployment_id`` and ``service`` to every log line in the block."""
    tokens = structlog.contextvars.bind_contextvars(
        deployment_id=deployment_id, service=service
    )
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
