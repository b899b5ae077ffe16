import json, logging, sys, time
from pathlib import Path

_RESERVED = frozenset((
    "name", "msg", "args", "exc_info", "exc_text", "stack_info", "stack_level", "created",
    "msecs", "relativeCreated", "levelno", "levelname", "pathname", "filename",
    "module", "lineno", "funcName", "thread", "threadName", "processName", "process",
    "taskName", "message", "asctime",
))

TEXT_FORMAT = "%(asctime)s %(message)s"
TEXT_DATEFMT = "%Y/%m/%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # Allow extra fields via record.__dict__ (filtered)
        for k, v in record.__dict__.items():
            if k in _RESERVED or k.startswith("_"):
                continue
            try:
                json.dumps({k: v})
                payload[k] = v
            except (TypeError, ValueError):
                payload[k] = str(v)
        return json.dumps(payload)


def _text_formatter() -> logging.Formatter:
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)


def get_logger(name: str = "broadcast_relay") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(_text_formatter())
    h._relay_stream_handler = True  # type: ignore[attr-defined]
    logger.addHandler(h)
    logger.propagate = False
    return logger


def configure_logging(
    *,
    json_logs: bool = False,
    log_file: str | None = None,
    level: int = logging.INFO,
    logger: logging.Logger | None = None,
) -> logging.Logger:
    """Switch the relay logger between text and JSON output and optionally tee to a file."""

    active_logger = logger or get_logger()
    active_logger.setLevel(level)
    formatter: logging.Formatter = JsonFormatter() if json_logs else _text_formatter()

    for handler in list(active_logger.handlers):
        if getattr(handler, "_relay_stream_handler", False):
            handler.setFormatter(formatter)

    if log_file:
        configure_file_logger(log_file, logger=active_logger, json_logs=json_logs)
    return active_logger


def configure_file_logger(
    path: str | Path,
    logger: logging.Logger | None = None,
    *,
    json_logs: bool = True,
) -> Path:
    """Attach a file handler and return log path."""

    active_logger = logger or get_logger()

    # Drop any previous file handlers we attached to avoid duplicate writes during tests.
    for handler in list(active_logger.handlers):
        if getattr(handler, "_relay_file_handler", False):
            active_logger.removeHandler(handler)
            handler.close()

    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(JsonFormatter() if json_logs else _text_formatter())
    file_handler._relay_file_handler = True  # type: ignore[attr-defined]
    active_logger.addHandler(file_handler)

    return log_path
