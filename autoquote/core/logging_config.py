"""
Structured logging for the AutoQuote pipeline.
Import and call setup_logging() once at app startup.

Pipeline code attaches its context with logger.info(..., extra={...}); the
keys below are the ones an operator filters on (which mailbox, which sender,
why a message was routed where it went, which quote came out).
"""
import logging
import logging.handlers
import os
import json
from datetime import datetime, timezone

from autoquote.core import paths

# Message context: where it came from and what happened to it
MESSAGE_KEYS = ("account", "message_id", "uid", "sender", "source", "outcome")
# Routing and quoting context
ROUTING_KEYS = ("route", "status", "reason", "confidence", "items", "quote_id", "total")
# HTTP request context
REQUEST_KEYS = ("method", "duration_ms")

EXTRA_KEYS = MESSAGE_KEYS + ROUTING_KEYS + REQUEST_KEYS

# Shown inline on console lines, in this order
CONSOLE_KEYS = ("account", "sender", "outcome", "route", "reason", "confidence", "quote_id")

NOISY_LOGGERS = ("urllib3", "werkzeug", "PIL", "reportlab", "httpx", "anthropic")


def record_context(record, keys=EXTRA_KEYS) -> dict:
    """Pipeline extras present on a log record, in key order."""
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the rotating file and log shippers."""
    def format(self, record):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Coloured console line with the routing context appended."""
    COLORS = {
        "DEBUG": "\033[36m", "INFO": "\033[32m",
        "WARNING": "\033[33m", "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record):
        ts = datetime.now().strftime("%H:%M:%S")
        line = f"{ts} [{record.levelname[0]}] {record.name}: {record.getMessage()}"
        context = record_context(record, CONSOLE_KEYS)
        if context:
            line += "  (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        if self.color:
            line = f"{self.COLORS.get(record.levelname, '')}{line}{self.RESET}"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level=None, json_logs=None, log_dir=None):
    """
    Configure logging for the full application.

    Args:
        level: Override log level (default: from LOG_LEVEL env or INFO)
        json_logs: JSON on the console too (default: True when AUTOQUOTE_JSON_LOGS is set)
        log_dir: Directory for autoquote.log (default: DATA_DIR/logs)
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if json_logs is None:
        json_logs = bool(os.environ.get("AUTOQUOTE_JSON_LOGS"))
    log_dir = log_dir or paths.LOG_DIR

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    root.addHandler(console)

    # The audit file is always JSON so sweeps can be replayed per message_id
    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "autoquote.log"),
            maxBytes=5_000_000, backupCount=5,
        )
        fh.setFormatter(JSONFormatter())
        root.addHandler(fh)
    except OSError as e:
        logging.getLogger("autoquote").warning("File logging disabled (%s): %s", log_dir, e)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("autoquote").info("Logging initialized at %s", level,
                                        extra={"status": level})
