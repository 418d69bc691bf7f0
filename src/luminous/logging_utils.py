"""Process logging and the session key stamped on every record."""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "chat"]

DEFAULT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | {extra[session]} | {message}"
)
NO_SESSION = "-"

_session_key: ContextVar[str] = ContextVar("luminous_session", default=NO_SESSION)
_active_profile: LogProfile | None = None


def current_session() -> str:
    return _session_key.get()


@contextmanager
def session_scope(session_key: str) -> Iterator[None]:
    """Stamp records logged inside the block with ``session_key``."""
    token = _session_key.set(session_key)
    try:
        yield
    finally:
        _session_key.reset(token)


def _stamp_session(record: loguru.Record) -> None:
    record["extra"]["session"] = current_session()


def _sink_options(profile: LogProfile) -> dict[str, Any]:
    if profile == "chat":
        # Rich prints the level itself; the interactive loop has a single session.
        console_handler = RichHandler(
            console=get_console(),
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        return {"sink": console_handler, "format": "{message}"}
    return {"sink": sys.stderr, "format": DEFAULT_FORMAT}


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Install the one sink for ``profile``. Calling again with the same profile does nothing."""
    global _active_profile
    if profile == _active_profile:
        return

    logger.remove()
    logger.add(
        level=(level or os.getenv("LUMINOUS_LOG_LEVEL", "INFO")).upper(),
        backtrace=False,
        diagnose=False,
        **_sink_options(profile),
    )
    logger.configure(patcher=_stamp_session)
    _active_profile = profile
