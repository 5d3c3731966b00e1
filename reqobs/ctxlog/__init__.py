"""
Context Logging Package.

Components:
- attributes: LogAttributeSet, the ordered attribute bag carried by loggers
- composer: ContextLogger, LoggerComposer, get_logger() and bind_logger()
- formatters: JsonFormatter and configure_logging()
- middleware: ContextLoggerMiddleware and RequestLogMiddleware
"""

from .attributes import LogAttributeSet
from .composer import (
    ContextLogger,
    LoggerComposer,
    bind_logger,
    filter_headers,
    get_logger,
)
from .formatters import JsonFormatter, TextFormatter, configure_logging
from .middleware import ContextLoggerMiddleware, RequestLogMiddleware


__all__ = [
    "LogAttributeSet",
    "ContextLogger",
    "LoggerComposer",
    "bind_logger",
    "filter_headers",
    "get_logger",
    "JsonFormatter",
    "TextFormatter",
    "configure_logging",
    "ContextLoggerMiddleware",
    "RequestLogMiddleware",
]
