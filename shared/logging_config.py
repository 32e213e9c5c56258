import logging
import logging.handlers
from pathlib import Path
from typing import Optional

NOISY_LOGGERS = ["urllib3.connectionpool",
                 "botocore",
                 "boto3",
                 "s3transfer",
                 "werkzeug"]

FORMAT = "[%(asctime)s] %(levelname)s [%(name)s-%(funcName)s:%(lineno)d] %(message)s"


class InfoAndAboveNoisyFilter(logging.Filter):
    def filter(self, record):
        if not any(logger in record.name for logger in NOISY_LOGGERS): return True
        return record.levelno >= logging.INFO


class WarningAndAboveNoisyFilter(logging.Filter):
    def filter(self, record):
        if not any(logger in record.name for logger in NOISY_LOGGERS): return True
        return record.levelno >= logging.WARNING


def setup_logging(level: str = "INFO", log_path: Optional[str] = None) -> None:
    """
    Configure the root logger: console plus an optional rotating file.
    Call this ONCE from an entry point (CLI / server), never from library code.
    """
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(FORMAT, datefmt='%H:%M:%S')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(WarningAndAboveNoisyFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if log_path:
        path = Path(log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=10*1024*1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(InfoAndAboveNoisyFilter())
        root_logger.addHandler(file_handler)

    logging.getLogger(__name__).info(
        f"Logging initialized (console level: {level.lower()}, file: {log_path or 'none'})"
    )
