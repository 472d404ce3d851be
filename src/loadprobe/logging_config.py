# loadprobe/logging_config.py
import contextvars
import logging
import sys

# Short id of the load test a log line belongs to; "-" outside any run
current_run: contextvars.ContextVar[str] = contextvars.ContextVar("current_run", default="-")


class RunContextFilter(logging.Filter):
    """Stamps each record with the id of the run that emitted it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run = current_run.get()
        return True


def setup_logging(level: str = "INFO", log_file: str = None, quiet: bool = False) -> logging.Logger:
    """
    Configure logging to print to stderr so stdout carries only the report.
    If log_file is provided, also log to that file at the full level.
    With quiet, stderr only shows warnings and errors.
    """
    logger = logging.getLogger()
    logger.setLevel(level.upper())

    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(run)-8s | %(name)-20s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    run_filter = RunContextFilter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(run_filter)
    if quiet:
        console_handler.setLevel(logging.WARNING)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(run_filter)
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {log_file}")

    # aborted connections make aiohttp chatty; only show that noise when debugging
    if logger.level > logging.DEBUG:
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    def handle_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logger.error("Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = handle_exception

    return logger
