"""
Request observability pipeline for HTTP (FastAPI/Starlette) and gRPC services.

Subpackages:
- context: request identifier extraction, scoping and forwarding
- ctxlog: context-bound structured logging and request log lines
- redaction: schema-driven pruning of non-loggable fields
- classifier: HTTP verb + URL -> operation label
- audit: compliance record construction and best-effort delivery
- recovery: conversion of unhandled exceptions into safe responses
- rpc: gRPC server and client interceptors
"""

from .app import install_observability
from .context import current_request_context
from .ctxlog import get_logger


__version__ = "0.1.0"

__all__ = [
    "install_observability",
    "current_request_context",
    "get_logger",
]
