"""
Call classification: HTTP verb + URL -> normalized operation label.

The label is what request logs report as ``method`` and what the audit
emitter records as the operation name, e.g.

    GET https://host/subscriptions/s/resourceGroups/rg/providers/Microsoft.Storage/storageAccounts/a
        -> "GET storageaccounts - READ"
    GET https://host/subscriptions/s/resourceGroups
        -> "GET resourcegroups - LIST"
    GET https://host/api/other?x=1&api-version=2023-01-01
        -> "GET https://host/api/other?api-version=2023-01-01"

Classification never raises.
"""

import logging
from enum import Enum
from typing import NamedTuple, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from ..core.exceptions import ResourceIdParseError
from .resource_id import ResourceId, parse_resource_id, trim_to_subscription

logger = logging.getLogger(__name__)

API_VERSION_PARAM = "api-version"
COLLECTION_PLACEHOLDER = "/dummy"
UNKNOWN_METHOD = "UNKNOWN"

WRITE_METHODS = frozenset({"PUT", "PATCH", "POST", "DELETE"})


class OperationKind(str, Enum):
    """Coarse kind of operation performed on a resource."""

    LIST = "LIST"
    READ = "READ"
    WRITE = "WRITE"
    OTHER = "OTHER"


class ResourceDescriptor(NamedTuple):
    """Normalized resource type and operation kind of one call."""

    resource_type: str
    operation_kind: OperationKind


def trim_url(raw_url: str) -> str:
    """
    Drop every query parameter except api-version.

    Args:
        raw_url: Absolute or relative URL

    Returns:
        scheme://host/path (or just the path for relative URLs), followed
        by ``?api-version=<v>`` when that parameter is present
    """
    if not raw_url:
        return ""
    try:
        parts = urlsplit(raw_url)
        api_versions = parse_qs(parts.query).get(API_VERSION_PARAM)
    except ValueError:
        return raw_url

    if parts.scheme and parts.netloc:
        base = f"{parts.scheme}://{parts.netloc}{parts.path}"
    else:
        base = parts.path
    if api_versions and api_versions[0]:
        return f"{base}?{API_VERSION_PARAM}={api_versions[0]}"
    return base


def normalize_resource_type(resource_type: str) -> str:
    """
    Reduce a fully qualified resource type to its last segment, lower-cased.

    Anything from a literal "?" or an "api-version" marker onward is cut.
    """
    idx = resource_type.rfind("/")
    if idx != -1 and idx < len(resource_type) - 1:
        resource_type = resource_type[idx + 1:]
    for marker in ("?", API_VERSION_PARAM):
        idx = resource_type.find(marker)
        if idx != -1:
            resource_type = resource_type[:idx]
    return resource_type.lower()


def _url_path(url: str) -> str:
    try:
        return urlsplit(url).path
    except ValueError:
        return url.split("?", 1)[0]


def _parse(trimmed_url: str) -> Tuple[ResourceId, bool]:
    """
    Parse the resource id in a URL, retrying once as a collection call.

    Returns:
        (resource id, whether a placeholder name was appended)

    Raises:
        ResourceIdParseError: If neither attempt parses
    """
    path = trim_to_subscription(_url_path(trimmed_url))
    try:
        return parse_resource_id(path), False
    except ResourceIdParseError:
        if path.endswith(COLLECTION_PLACEHOLDER):
            raise
    return parse_resource_id(path.rstrip("/") + COLLECTION_PLACEHOLDER), True


def _normalize_method(method: Optional[str]) -> str:
    method = (method or "").strip().upper()
    return method or UNKNOWN_METHOD


def describe(method: Optional[str], raw_url: str) -> Optional[ResourceDescriptor]:
    """
    Describe the resource targeted by a call.

    Args:
        method: HTTP method
        raw_url: Request URL

    Returns:
        ResourceDescriptor, or None when the URL is not a resource identifier
    """
    method = _normalize_method(method)
    try:
        resource_id, collection = _parse(trim_url(raw_url or ""))
    except (ResourceIdParseError, ValueError):
        return None

    resource_type = normalize_resource_type(resource_id.resource_type)
    if not resource_type:
        return None

    if method == "GET":
        if collection or not resource_id.name.strip():
            kind = OperationKind.LIST
        else:
            kind = OperationKind.READ
    elif method in WRITE_METHODS:
        kind = OperationKind.WRITE
    else:
        kind = OperationKind.OTHER
    return ResourceDescriptor(resource_type=resource_type, operation_kind=kind)


def classify(method: Optional[str], raw_url: str) -> str:
    """
    Map an HTTP method and URL to an operation label.

    Args:
        method: HTTP method; "UNKNOWN" is used when empty
        raw_url: Request URL, absolute or relative

    Returns:
        "<METHOD> <resourcetype>[ - READ| - LIST]" for resource URLs,
        otherwise "<METHOD> <trimmed url>". Never empty.
    """
    method = _normalize_method(method)
    try:
        descriptor = describe(method, raw_url)
        if descriptor is not None:
            label = f"{method} {descriptor.resource_type}"
            if descriptor.operation_kind in (OperationKind.LIST, OperationKind.READ):
                label = f"{label} - {descriptor.operation_kind.value}"
            return label
        trimmed = trim_url(raw_url or "")
    except Exception as e:
        logger.debug(f"Classification failed for {raw_url!r}: {e}")
        trimmed = raw_url or ""

    return f"{method} {trimmed}" if trimmed else method
