"""
Log formatting and process-wide logging setup.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.config import ObservabilitySettings

TEXT_FORMAT = "%(asctime)s,p%(process)s,{%(filename)s:%(lineno)d},%(levelname)s,%(message)s"


class JsonFormatter(logging.Formatter):
    """
    Render records as single-line JSON.

    Context logger attributes are written as top-level keys after the
    fixed record fields, in the order they were layered.
    """

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            payload["service_name"] = self.service_name

        attributes = getattr(record, "attributes", None)
        if attributes:
            payload.update(attributes)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Plain text format with attributes appended as key=value pairs."""

    def __init__(self):
        super().__init__(fmt=TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        attributes = getattr(record, "attributes", None)
        if attributes:
            pairs = ",".join(f"{k}={v}" for k, v in attributes.items())
            line = f"{line},{pairs}"
        return line


def configure_logging(config: ObservabilitySettings) -> None:
    """
    Configure the root logger for the pipeline.

    Args:
        config: Settings providing log level, format and service name
    """
    if config.log_format == "json":
        formatter: logging.Formatter = JsonFormatter(service_name=config.service_name)
    else:
        formatter = TextFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(config.log_level.upper())
