import inspect
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level: <7}</level> "
    "<cyan>{extra[source]: <18}</cyan> "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[source]} | {function}:{line} | {message}"

# Held at WARNING; they log every job run and connection
QUIET_LOGGERS = ("apscheduler", "urllib3")


class InterceptHandler(logging.Handler):
    """Forward stdlib records (``golazo.*`` and third-party) to loguru, keeping the logger name."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.bind(source=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _jsonl(record) -> str:
    entry = {
        "ts": record["time"].isoformat(),
        "level": record["level"].name,
        "source": record["extra"].get("source"),
        "message": record["message"],
        "where": f"{record['function']}:{record['line']}",
    }
    if record["exception"] is not None:
        entry["exception"] = repr(record["exception"].value)
    record["extra"]["_jsonl"] = json.dumps(entry, default=str)
    return "{extra[_jsonl]}\n"


def setup_logger(level: str = "INFO", log_dir: Optional[str] = "logs"):
    """Route all logging through loguru.

    Console gets ``level``. With ``log_dir`` set, ``golazo_<date>.log`` keeps
    DEBUG detail and ``alerts_<date>.jsonl`` keeps INFO+ as one JSON object
    per line; both rotate at midnight.
    """
    logger.remove()
    logger.configure(extra={"source": "golazo"})

    logger.add(sys.stdout, format=CONSOLE_FORMAT, level=level, colorize=True, diagnose=False)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(path / "golazo_{time:YYYY-MM-DD}.log", format=FILE_FORMAT, level="DEBUG",
                   rotation="00:00", retention="14 days", compression="zip", diagnose=False)
        logger.add(path / "alerts_{time:YYYY-MM-DD}.jsonl", format=_jsonl, level="INFO",
                   rotation="00:00", retention="30 days")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
