from __future__ import annotations

import logging

from leadgrid.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def test_setup_logging_is_idempotent():
    reset_logging()
    logger = setup_logging()
    assert logger.name == LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    assert setup_logging() is logger
    assert get_logger() is logger


def test_debug_lowers_level():
    reset_logging()
    setup_logging()
    logger = setup_logging(debug=True)
    assert logger.level == logging.DEBUG
    assert logger.handlers[0].level == logging.DEBUG
    reset_logging()


def test_labeled_prefixes(capsys):
    reset_logging()
    logger = setup_logging()
    logger.info("hello")
    logger.warning("careful")
    logger.error("broken")
    log_summary("job=import total=1 succeeded=1 failed=0 elapsed_sec=0.1")
    logging.getLogger("leadgrid.services.session").info("from a module")
    out = capsys.readouterr().out.splitlines()
    assert out == [
        "INFO hello",
        "WARN careful",
        "ERROR broken",
        "SUMMARY job=import total=1 succeeded=1 failed=0 elapsed_sec=0.1",
        "INFO from a module",
    ]
    assert logging.getLevelName(SUMMARY_LEVEL) == "SUMMARY"
    reset_logging()
