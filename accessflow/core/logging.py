import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from accessflow.core.config import settings

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("passlib", "multipart")


def configure_logging(level: Optional[str] = None) -> None:
    log_path = Path(settings.data_dir) / "accessflow.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    root_logger.setLevel(level or settings.log_level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=5)
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # StaleCacheWarning is raised through warnings.warn; keep a copy in the log.
    logging.captureWarnings(True)
