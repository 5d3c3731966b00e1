"""
FastAPI middleware forming the recovery boundary.

Any exception escaping the rest of the chain is caught here exactly
once, logged as "Panic occurred" with its provenance and converted into
a safe error response. Only the failing request is affected.
"""

import inspect
import logging
from http import HTTPStatus
from typing import Awaitable, Callable, Optional, Union

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp

from ..classifier import classify
from ..core.constants import API_REQUEST_LOG_SOURCE
from ..core.metrics import get_instruments
from ..ctxlog.composer import ContextLogger
from .provenance import PanicInfo, panic_provenance

logger = logging.getLogger(__name__)

PANIC_LOGGER_NAME = "reqobs.recovery"

PanicHandler = Callable[
    [Request, BaseException, PanicInfo],
    Union[Optional[Response], Awaitable[Optional[Response]]],
]


class RecoveryMiddleware(BaseHTTPMiddleware):
    """
    Middleware converting unhandled exceptions into error responses.

    Attributes:
        status_code: Status of the fallback response (default 500)
        panic_handler: Optional callback that may supply its own response
    """

    def __init__(
        self,
        app: ASGIApp,
        status_code: int = 500,
        panic_handler: Optional[PanicHandler] = None,
        panic_logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the RecoveryMiddleware.

        Args:
            app: The ASGI application
            status_code: Status returned for recovered requests
            panic_handler: Called with (request, exception, info); a returned
                Response replaces the default one
            panic_logger: Logger receiving "Panic occurred" records
        """
        super().__init__(app)
        self.status_code = status_code
        self.panic_handler = panic_handler
        self.panic_logger = panic_logger or logging.getLogger(PANIC_LOGGER_NAME)

    def _default_response(self) -> Response:
        try:
            phrase = HTTPStatus(self.status_code).phrase
        except ValueError:
            phrase = "Internal Server Error"
        return PlainTextResponse(phrase, status_code=self.status_code)

    def _log_panic(self, request: Request, exc: BaseException, info: PanicInfo) -> None:
        attributes = {
            "source": API_REQUEST_LOG_SOURCE,
            "protocol": "HTTP",
            "method_type": "unary",
            "component": "server",
            "method": classify(request.method, str(request.url)),
            "service": request.url.netloc,
            "url": str(request.url),
        }
        ctx = getattr(request.state, "request_context", None)
        if ctx is not None:
            attributes.update(ctx.identifiers())
        attributes.update(
            error=info.message,
            exception_type=info.exception_type,
            file=info.file,
            line=info.line,
            function=info.function,
        )
        ContextLogger(self.panic_logger, attributes).error(
            "Panic occurred",
            exc_info=(type(exc), exc, exc.__traceback__),
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            info = panic_provenance(exc)
            request.state.panic_info = info
            self._log_panic(request, exc, info)
            get_instruments().panic_counter.add(1, {"protocol": "HTTP"})

            if self.panic_handler is not None:
                try:
                    result = self.panic_handler(request, exc, info)
                    if inspect.isawaitable(result):
                        result = await result
                    if result is not None:
                        return result
                except Exception as handler_exc:
                    logger.error(f"Panic handler failed, using default response: {handler_exc}")

            return self._default_response()
