"""
Tests for logging setup.
"""

import logging

import pytest

from parley.log import setup_logging


@pytest.fixture(autouse=True)
def _restore_root():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    httpx_level = logging.getLogger("httpx").level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)


def test_level_from_config():
    setup_logging({"logging": {"level": "debug"}})
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    setup_logging({"logging": {"level": "chatty"}})
    assert logging.getLogger().level == logging.INFO


def test_file_handler(tmp_path):
    log_file = tmp_path / "logs" / "parley.log"
    setup_logging({"logging": {"file": str(log_file)}})

    logging.getLogger("parley.test").info("written to file")
    for h in logging.getLogger().handlers:
        h.flush()

    assert "written to file" in log_file.read_text()
