"""Tests for log formatting."""

import logging

from core.logger import ColoredFormatter, ContextFormatter, setup_logger


def make_record(**extra):
    record = logging.LogRecord("services.test", logging.INFO, __file__, 1, "User joined", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extra_fields_are_appended():
    line = ContextFormatter("%(levelname)s %(message)s").format(make_record(user_id=5, giveaway_id=2))
    assert line == "INFO User joined | giveaway_id=2 user_id=5"


def test_plain_record_has_no_context():
    assert ContextFormatter("%(message)s").format(make_record()) == "User joined"


def test_colors_do_not_leak_into_shared_record():
    record = make_record()
    ColoredFormatter("%(levelname)s %(message)s").format(record)
    assert record.levelname == "INFO"


def test_setup_logger_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "app.log"
    logger = setup_logger("giveaway-test", log_file=str(log_file), colored=False)
    logger.info("hello", extra={"request_id": "abc"})
    for handler in logger.handlers:
        handler.flush()

    assert "hello | request_id=abc" in log_file.read_text(encoding="utf-8")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
