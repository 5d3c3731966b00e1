"""
gRPC Adapters Package.

Components:
- interceptors: server interceptors for context, logging, response
  metadata and recovery, plus default_server_interceptors()
- client: client interceptors forwarding identifiers and logging calls
"""

from .client import (
    ClientLoggingInterceptor,
    MetadataForwardingClientInterceptor,
    default_client_interceptors,
)
from .interceptors import (
    ContextLoggerInterceptor,
    RecoveryInterceptor,
    RequestContextInterceptor,
    RequestLoggingInterceptor,
    ResponseHeaderInterceptor,
    default_server_interceptors,
)


__all__ = [
    "ClientLoggingInterceptor",
    "MetadataForwardingClientInterceptor",
    "default_client_interceptors",
    "ContextLoggerInterceptor",
    "RecoveryInterceptor",
    "RequestContextInterceptor",
    "RequestLoggingInterceptor",
    "ResponseHeaderInterceptor",
    "default_server_interceptors",
]
