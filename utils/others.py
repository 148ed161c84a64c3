import logging
import os
from datetime import datetime, timezone

from definitions import LOGS_DIR

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[38;5;244m",  # gray
        "INFO": "\033[38;5;120m",  # soft mint green
        "WARNING": "\033[38;5;221m",  # warm yellow
        "ERROR": "\033[38;5;196m",  # bright red
        "CRITICAL": "\033[1;38;5;196;48;5;232m",  # bold bright red on dark bg
    }
    RESET = "\033[0m"

    def format(self, record):
        level = record.levelname
        if level in self.COLORS:
            record.levelname = f"{self.COLORS[level]}{level}{self.RESET}"
        return super().format(record)


def setup_logging(settings, console=False, debug=False):
    """
    Sets up the logging configuration based on provided settings.

    Args:
        settings (Settings): Resolved settings; `log_file_name` is the log file prefix.
        console (bool): If True, log to console instead of a file.
        debug (bool): If True, set the logging level to DEBUG; otherwise, INFO.

    Returns:
        str | None: The log file path, or None when logging to console.
    """
    log_file_name_time = datetime.now().strftime("%Y%m%d%H%M%S")
    log_file_name_full = f"{settings.log_file_name}-{log_file_name_time}.log"
    log_file_path = os.path.join(LOGS_DIR, log_file_name_full)

    logger_level = logging.DEBUG if debug else logging.INFO

    log_format = "%(asctime)s [%(name)s.%(funcName)s:%(lineno)d] %(levelname)s - %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    handlers = []

    if console:
        handler = logging.StreamHandler()
        handler.setFormatter(ColoredFormatter(log_format, datefmt=date_format))
        handlers.append(handler)
    else:
        os.makedirs(LOGS_DIR, exist_ok=True)
        handler = logging.FileHandler(log_file_path)
        handler.setFormatter(logging.Formatter(log_format, date_format))
        handlers.append(handler)

    logging.basicConfig(
        level=logger_level,
        format=log_format,
        datefmt=date_format,
        handlers=handlers,
        force=True,
    )

    # Vendor clients are chatty at DEBUG
    for noisy in ("urllib3", "httpx", "httpcore", "tweepy"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging initialized.")
    if console:
        logger.info("Logging to console.")
        return None
    logger.info("Logging to file: %s", log_file_path)
    return log_file_path


def log_startup_info(args, settings):
    """
    Log startup information, including arguments and the resolved settings.
    The encryption key itself is never logged, only where it came from.

    Args:
        args (Namespace): The parsed arguments.
        settings (Settings): The resolved settings.
    """
    logger.info("#" * 80)
    logger.info("New instance of crosspost started.")
    logger.info("TIME: %s", datetime.now())
    logger.info("Startup Parameters:")

    for arg, value in vars(args).items():
        logger.info("  ARG - %s: %s", arg, value)

    logger.info("Settings:")
    logger.info("  SETTING - data_dir: %s", settings.data_dir)
    logger.info("  SETTING - poll_seconds: %s", settings.poll_seconds)
    logger.info("  SETTING - capability_ttl_seconds: %s", settings.capability_ttl_seconds)
    logger.info("  SETTING - status_file: %s", settings.status_file)
    logger.info("  SETTING - nosocial: %s", settings.nosocial)
    logger.info("  SETTING - encryption_key: %s", settings.encryption_key_source)

    logger.info("#" * 80)


def utc_now():
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def preview_text(text, limit=80):
    """Single-line, truncated text for log lines."""
    flat = " ".join((text or "").split())
    return flat if len(flat) <= limit else flat[: limit - 1] + "…"
