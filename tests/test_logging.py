import logging
import sys

import pytest
import structlog

from m365_core.logging_setup import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name in ("urllib3", "msal", "httpx"):
        logging.getLogger(name).setLevel(logging.NOTSET)
    structlog.reset_defaults()


def test_single_stderr_handler():
    setup_logging("debug")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert root.handlers[0].stream is sys.stderr


def test_http_stack_is_quieted():
    setup_logging("debug")

    assert logging.getLogger("urllib3").level == logging.WARNING
    assert logging.getLogger("msal").level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    setup_logging("chatty")

    assert logging.getLogger().level == logging.INFO


def test_events_render_with_fields(capsys):
    setup_logging("info")
    logging.getLogger().handlers[0].stream = sys.stderr

    get_logger("m365_core.test").info("token_acquired", scope="graph", expires_in=3599)

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "token_acquired" in captured.err
    assert "expires_in=3599" in captured.err


def test_debug_events_filtered_at_info(capsys):
    setup_logging("info")
    logging.getLogger().handlers[0].stream = sys.stderr

    get_logger("m365_core.test").debug("token_requested", scope="graph")

    assert "token_requested" not in capsys.readouterr().err
