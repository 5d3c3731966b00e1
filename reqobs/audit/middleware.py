"""
FastAPI middleware for audit emission.

This module provides middleware that hands every completed request to
the AuditEmitter. Emission runs as a response background task, after
the response body has been sent, so sink latency never delays the
caller.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.http_utils import buffer_error_body
from .emitter import AuditEmitter

logger = logging.getLogger(__name__)


def request_uri(request: Request) -> str:
    """Request target as sent by the client: path plus query string."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def remote_addr(request: Request) -> Optional[str]:
    """Caller address as "host:port", bracketing IPv6 hosts."""
    if request.client is None:
        return None
    host, port = request.client.host, request.client.port
    if host and ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}"


def _chain_background(response: Response, task: BackgroundTask) -> None:
    """Run task after any background work the response already carries."""
    existing = response.background
    if existing is None:
        response.background = task
        return
    if isinstance(existing, BackgroundTasks):
        existing.tasks.append(task)
        return
    tasks = BackgroundTasks()
    tasks.tasks.extend([existing, task])
    response.background = tasks


class AuditMiddleware(BaseHTTPMiddleware):
    """
    Middleware that emits an audit record for every request.

    Responses with status >= 400 have their body captured (up to
    max_error_body_chars) and included in the result description.

    Attributes:
        emitter: The AuditEmitter building and sending records
        max_error_body_chars: Bound on captured error text
    """

    def __init__(
        self,
        app: ASGIApp,
        emitter: AuditEmitter,
        max_error_body_chars: int = 4096,
    ):
        """
        Initialize the AuditMiddleware.

        Args:
            app: The ASGI application
            emitter: AuditEmitter instance
            max_error_body_chars: Bound on the error text captured from bodies
        """
        super().__init__(app)
        self.emitter = emitter
        self.max_error_body_chars = max_error_body_chars

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process the request and schedule its audit record.

        Args:
            request: The FastAPI request object
            call_next: The next middleware/handler in the chain

        Returns:
            The response from the next handler
        """
        uri = request_uri(request)
        if self.emitter.should_exclude(request.method, uri):
            return await call_next(request)

        response = await call_next(request)

        error_message = ""
        if response.status_code >= 400:
            response, error_message = await buffer_error_body(response, self.max_error_body_chars)

        try:
            task = BackgroundTask(
                self.emitter.emit,
                method=request.method,
                request_uri=uri,
                url=str(request.url),
                status_code=response.status_code,
                headers=dict(request.headers),
                remote_addr=remote_addr(request),
                path_params=dict(request.path_params),
                error_message=error_message,
                label=getattr(request.state, "call_label", None),
                ctx=getattr(request.state, "request_context", None),
            )
            _chain_background(response, task)
        except Exception as e:
            # Audit scheduling failures must not break the request
            logger.error(f"Failed to schedule audit event: {e}")

        return response


def add_audit_middleware(
    app,
    emitter: AuditEmitter,
    max_error_body_chars: int = 4096,
) -> None:
    """
    Convenience function to add audit middleware to a FastAPI app.

    Args:
        app: FastAPI application instance
        emitter: AuditEmitter instance
        max_error_body_chars: Bound on the error text captured from bodies
    """
    app.add_middleware(
        AuditMiddleware,
        emitter=emitter,
        max_error_body_chars=max_error_body_chars,
    )
    logger.info("Audit middleware added to application")
