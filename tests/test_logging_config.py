import asyncio
import logging
import sys

import pytest

from loadprobe.logging_config import current_run, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level, hook = root.handlers[:], root.level, sys.excepthook
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    sys.excepthook = hook


def test_quiet_keeps_stderr_to_warnings_but_file_gets_everything(tmp_path, capsys):
    log_file = tmp_path / "run.log"
    setup_logging(level="INFO", log_file=str(log_file), quiet=True)

    logging.getLogger("loadprobe.core").info("Starting 10 requests in batches of 2")
    logging.getLogger("loadprobe.cli").warning("At least one target is classified CRITICAL")

    err = capsys.readouterr().err
    assert "Starting 10 requests" not in err
    assert "classified CRITICAL" in err
    text = log_file.read_text()
    assert "Starting 10 requests" in text and "classified CRITICAL" in text


def test_log_lines_carry_the_run_id(capsys):
    setup_logging(level="INFO")
    log = logging.getLogger("loadprobe.core")

    async def in_run():
        current_run.set("3f2a9c1d")
        log.info("inside a run")

    log.info("outside any run")
    asyncio.run(in_run())

    lines = capsys.readouterr().err.splitlines()
    assert "| -        |" in lines[0]
    assert "| 3f2a9c1d |" in lines[1]
    assert current_run.get() == "-"
