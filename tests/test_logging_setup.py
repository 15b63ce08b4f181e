import json
import logging
import sys

import pytest

from thermal_sentinel.logging_setup import JsonFormatter, configure_logging


@pytest.fixture
def clean_logger():
    logger = logging.getLogger("thermal_sentinel")
    saved_handlers, saved_level = logger.handlers[:], logger.level
    logger.handlers = []
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers = saved_handlers
    logger.setLevel(saved_level)


def test_configure_logging_writes_json_file(tmp_path, clean_logger):
    logger = configure_logging(level="debug", log_dir=str(tmp_path), console=False)

    assert logger is clean_logger
    assert logger.level == logging.DEBUG

    logging.getLogger("thermal_sentinel.services.lhm_client").warning("LHM at %s answered with HTTP %s", "x", 404)
    for handler in logger.handlers:
        handler.flush()

    lines = (tmp_path / "sentinel.log").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]

    assert records[0]["message"].startswith("logging configured (level=DEBUG")
    assert records[-1]["level"] == "WARNING"
    assert records[-1]["logger"] == "thermal_sentinel.services.lhm_client"
    assert records[-1]["message"] == "LHM at x answered with HTTP 404"
    assert "time" in records[-1]
    assert "traceback" not in records[-1]


def test_configure_logging_is_idempotent(clean_logger):
    first = configure_logging(console=True)
    handlers = list(first.handlers)

    second = configure_logging(level="DEBUG")

    assert second is first
    assert second.handlers == handlers


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.getLogger("thermal_sentinel.test").makeRecord(
            "thermal_sentinel.test",
            logging.ERROR,
            __file__,
            1,
            "shutdown failed: %s",
            ("boom",),
            exc_info=sys.exc_info(),
        )

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "shutdown failed: boom"
    assert "RuntimeError: boom" in payload["traceback"]


def test_unknown_level_falls_back_to_info(clean_logger):
    logger = configure_logging(level="verbose", console=False)
    assert logger.level == logging.INFO
