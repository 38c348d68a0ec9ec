"""
core/logs.py -- Logging setup shared by the API process and tests.

Every log line carries the request correlation id. Records emitted inside the
gateway pass it through `extra={"correlation_id": ...}`; records from
frameworks (uvicorn, starlette) have none, so CorrelationIdFilter fills in "-"
to keep the format string from failing.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s [%(correlation_id)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class CorrelationIdFilter(logging.Filter):
    """Default the correlation_id attribute for records that did not set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the process.

    force=True replaces handlers installed by an earlier basicConfig call
    (uvicorn --reload re-imports the app module).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationIdFilter())

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
