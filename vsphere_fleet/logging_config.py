import logging
import os


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(threadName)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    resolved = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # pyVmomi and httpx log every round trip at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("pyVmomi").setLevel(logging.WARNING)
