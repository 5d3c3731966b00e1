"""
httpx integration for dependent HTTP calls.

Event hooks forward the active request's identifiers onto outgoing
requests and log a client-side "finished call" record for each
response.

Example:
    async with create_observed_async_client(base_url="https://management.azure.com") as client:
        await client.get("/subscriptions/sub/resourceGroups/rg?api-version=2023-01-01")
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..classifier import classify, trim_url
from ..core.constants import API_REQUEST_LOG_SOURCE, FORWARDED_IDENTIFIERS
from ..ctxlog.composer import ContextLogger, filter_headers
from .propagator import current_request_context, has_explicit_identifiers, outgoing_headers

logger = logging.getLogger(__name__)

REQUEST_LOGGER_NAME = "reqobs.request"
START_TIME_EXTENSION = "reqobs_start_time"
TIMEOUT_PHASES = ("connect", "read", "write", "pool")


def forward_identifiers(request: httpx.Request) -> None:
    """
    Add the active identifiers unless the caller already set one, and cap
    the request timeouts at the time left before the ingress deadline.
    """
    request.extensions[START_TIME_EXTENSION] = time.perf_counter()
    ctx = current_request_context()
    remaining = ctx.remaining_time() if ctx is not None else None
    if remaining is not None:
        timeouts = dict(request.extensions.get("timeout") or {})
        for phase in TIMEOUT_PHASES:
            value = timeouts.get(phase)
            timeouts[phase] = remaining if value is None else min(value, remaining)
        request.extensions["timeout"] = timeouts

    if has_explicit_identifiers(request.headers):
        return
    for header, value in outgoing_headers(ctx).items():
        request.headers[header] = value


def log_response(response: httpx.Response, request_logger: Optional[logging.Logger] = None) -> None:
    """Log a client-side "finished call" record for a response."""
    request = response.request
    start_time = request.extensions.get(START_TIME_EXTENSION)
    time_ms: Any = "na"
    if start_time is not None:
        time_ms = int((time.perf_counter() - start_time) * 1000)

    url = trim_url(str(request.url))
    attributes: Dict[str, Any] = {"source": API_REQUEST_LOG_SOURCE}
    ctx = current_request_context()
    if ctx is not None:
        attributes.update(ctx.identifiers())
    attributes.update(
        protocol="REST",
        method_type="unary",
        component="client",
        time_ms=time_ms,
        method=classify(request.method, url),
        service=request.url.host,
        url=url,
        headers=filter_headers(dict(response.headers), FORWARDED_IDENTIFIERS.values()),
        code=response.status_code,
    )

    api_logger = ContextLogger(request_logger or logging.getLogger(REQUEST_LOGGER_NAME), attributes)
    if 200 <= response.status_code < 300:
        api_logger.bind(error="na").info("finished call")
    else:
        api_logger.bind(error=f"{response.status_code} {response.reason_phrase}").error("finished call")


async def _forward_identifiers_async(request: httpx.Request) -> None:
    forward_identifiers(request)


async def _log_response_async(response: httpx.Response) -> None:
    log_response(response)


def create_observed_client(**kwargs: Any) -> httpx.Client:
    """
    Create an httpx.Client with identifier forwarding and call logging.

    Args:
        **kwargs: Passed through to httpx.Client

    Returns:
        httpx.Client
    """
    hooks = kwargs.pop("event_hooks", None) or {}
    kwargs["event_hooks"] = {
        "request": [forward_identifiers, *hooks.get("request", [])],
        "response": [log_response, *hooks.get("response", [])],
    }
    return httpx.Client(**kwargs)


def create_observed_async_client(**kwargs: Any) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient with identifier forwarding and call logging.

    Args:
        **kwargs: Passed through to httpx.AsyncClient

    Returns:
        httpx.AsyncClient
    """
    hooks = kwargs.pop("event_hooks", None) or {}
    kwargs["event_hooks"] = {
        "request": [_forward_identifiers_async, *hooks.get("request", [])],
        "response": [_log_response_async, *hooks.get("response", [])],
    }
    return httpx.AsyncClient(**kwargs)
