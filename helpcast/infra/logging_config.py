# helpcast/infra/logging_config.py
import logging
import sys
import json
from datetime import datetime, timezone

# Attributes every LogRecord has; anything else on a record came from ``extra=``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Short labels the console formatter shows inline, in this order
_CONSOLE_CONTEXT = (("request_id", "rid"), ("service_request_id", "sr"), ("user_id", "user"), ("job_id", "job"))


def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}


class JSONFormatter(logging.Formatter):
    """One JSON object per line for production log shipping"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for development"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")

        tags = [
            f"{label}={str(getattr(record, field))[:8]}"
            for field, label in _CONSOLE_CONTEXT
            if getattr(record, field, None) is not None
        ]
        context = f" [{' '.join(tags)}]" if tags else ""

        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}{context}: {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name
        use_json: JSON lines (production) instead of colored console output
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for noisy, noisy_level in (("uvicorn.access", logging.WARNING), ("botocore", logging.WARNING), ("aiohttp.access", logging.WARNING)):
        logging.getLogger(noisy).setLevel(noisy_level)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """Logger that stamps the given ids onto every record, merged with per-call ``extra``"""

    def __init__(self, logger: logging.Logger, **context):
        super().__init__(logger, {k: v for k, v in context.items() if v is not None})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def mask_coordinates(lat: float | None, lon: float | None) -> str:
    """Round coordinates to one decimal (about 10 km) for logs.

    ``mask_coordinates(12.9716, 77.5946)`` gives ``"13.0**, 77.6**"``.
    """
    if lat is None or lon is None:
        return "unknown"
    return f"{lat:.1f}**, {lon:.1f}**"
