import logging
import re
import sys
import os
from datetime import datetime

# Credentials embedded in clone URLs: https://<user>:<token>@host or https://<token>@host
_URL_CREDENTIALS_RE = re.compile(r"(https?://)[^/\s@]+@")


def redact(text: str) -> str:
    """Strip credentials from any URLs contained in text."""
    if not text:
        return text
    return _URL_CREDENTIALS_RE.sub(r"\1***@", text)


class RedactingFilter(logging.Filter):
    """Scrub URL credentials from log records before they are emitted."""

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    redact(a) if isinstance(a, str) else a for a in record.args
                )
        return True


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output."""

    cyan = "\x1b[36m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    red = "\x1b[31m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    format_str = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"

    FORMATS = {
        logging.DEBUG: cyan + format_str + reset,
        logging.INFO: green + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno) or self.format_str
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


def setup_logging(level=logging.INFO, log_dir: str = "logs"):
    """Setup centralized logging: colored console on stderr plus a daily log file."""
    root_logger = logging.getLogger()

    # Clear existing handlers to prevent duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)
    redacting = RedactingFilter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    console_handler.addFilter(redacting)
    root_logger.addHandler(console_handler)

    os.makedirs(log_dir, exist_ok=True)
    file_handler = logging.FileHandler(
        os.path.join(log_dir, f"healer_{datetime.now().strftime('%Y%m%d')}.log")
    )
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    file_handler.addFilter(redacting)
    root_logger.addHandler(file_handler)

    # Docker SDK and httpx are chatty at DEBUG
    for noisy in ["docker", "urllib3", "httpx", "httpcore"]:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    for logger_name in ["app", "uvicorn", "uvicorn.error", "uvicorn.access", "main"]:
        l = logging.getLogger(logger_name)
        l.setLevel(level)
        l.propagate = True

    root_logger.info("Logging initialized (console + file, credentials redacted).")
