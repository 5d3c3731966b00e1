"""
Small helpers shared by the HTTP middlewares and gRPC interceptors.
"""

import ipaddress
import logging
from typing import Any, Iterable, Mapping, Optional, Tuple

from starlette.responses import Response

logger = logging.getLogger(__name__)


def header_get(headers: Any, name: str) -> str:
    """
    Case-insensitive single-value header lookup.

    Accepts a Starlette/httpx header object, a plain mapping, or a
    sequence of (key, value) pairs such as gRPC invocation metadata.

    Args:
        headers: Header container
        name: Header name in any case

    Returns:
        The first value found, or an empty string when absent
    """
    if headers is None:
        return ""
    lowered = name.lower()
    if isinstance(headers, Mapping) or hasattr(headers, "items"):
        pairs: Iterable[Tuple[Any, Any]] = headers.items()
    else:
        pairs = headers
    for key, value in pairs:
        if str(key).lower() == lowered:
            if isinstance(value, bytes):
                return value.decode("latin-1")
            return str(value)
    return ""


def split_host_port(remote_addr: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a remote address into host and port.

    Supports "host:port", "[v6]:port" and the gRPC peer forms
    "ipv4:host:port" / "ipv6:[v6]:port".

    Args:
        remote_addr: Address string as reported by the transport

    Returns:
        (host, port); both None when the address is malformed
    """
    if not remote_addr:
        return None, None

    addr = remote_addr
    for prefix in ("ipv4:", "ipv6:"):
        if addr.startswith(prefix):
            addr = addr[len(prefix):]
            break

    if addr.startswith("["):
        end = addr.find("]")
        if end == -1 or not addr[end + 1:].startswith(":"):
            return None, None
        host, port = addr[1:end], addr[end + 2:]
    else:
        if addr.count(":") != 1:
            return None, None
        host, port = addr.split(":", 1)

    if not host or not port.isdigit():
        return None, None
    return host, port


def parse_ip(host: Optional[str]) -> Optional[str]:
    """Return the canonical form of an IP address, or None if it is not one."""
    if not host:
        return None
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        return None


async def buffer_error_body(response: Response, limit: int) -> Tuple[Response, str]:
    """
    Read the body of an error response so its text can be logged.

    The streamed body is consumed, so a replacement response carrying the
    same status, headers and background task is returned.

    Args:
        response: Response returned by call_next
        limit: Maximum number of characters of error text to keep

    Returns:
        (replacement response, error text truncated to limit)
    """
    body_iterator = getattr(response, "body_iterator", None)
    if body_iterator is None:
        body = getattr(response, "body", b"") or b""
        return response, body.decode("utf-8", errors="replace")[:limit]

    chunks = []
    async for chunk in body_iterator:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        chunks.append(chunk)
    body = b"".join(chunks)

    replacement = Response(content=body, status_code=response.status_code)
    replacement.raw_headers = [
        (key, value) for key, value in response.raw_headers if key.lower() != b"content-length"
    ] + [(b"content-length", str(len(body)).encode("latin-1"))]
    replacement.background = response.background
    return replacement, body.decode("utf-8", errors="replace")[:limit]
