import pytest
from loguru import logger

from luminous import logging_utils
from luminous.core.session import SessionLog


def test_session_scope_is_stamped_on_records(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logging_utils, "_active_profile", None)
    logging_utils.configure_logging(profile="default", level="INFO")
    sessions: list[str] = []
    handler_id = logger.add(lambda message: sessions.append(message.record["extra"]["session"]), level="INFO")
    try:
        with logging_utils.session_scope("luminous-test"):
            logger.info("inside")
        logger.info("outside")
    finally:
        logger.remove(handler_id)

    assert sessions == ["luminous-test", logging_utils.NO_SESSION]


def test_session_log_is_ordered_and_timestamped() -> None:
    log = SessionLog()
    log.add("first")
    mark = len(log)
    log.add("second")
    log.add("second")

    assert len(log) == 3
    assert log.since(mark) == log.lines[1:]
    assert all(line.startswith("[") and "] " in line for line in log.lines)
    assert [line.split("] ", 1)[1] for line in log.lines] == ["first", "second", "second"]
