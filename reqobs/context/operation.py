"""
Per-request operation details resolved at ingress.

The API version, subscription, resource group, target URI, HTTP method
and route name of an inbound request are recorded on the
RequestContext. The route is matched ahead of the router so the values
are available to every stage, not only to the handler.
"""

import re
from typing import Any, Dict, Mapping, Tuple

from fastapi import Request
from starlette.routing import Match

from ..classifier.classifier import API_VERSION_PARAM
from ..core.constants import RESOURCE_GROUP_PATH_PARAM, SUBSCRIPTION_ID_PATH_PARAM

_SUBSCRIPTION_SEGMENT = re.compile(r"/subscriptions/([^/?]+)", re.IGNORECASE)
_RESOURCE_GROUP_SEGMENT = re.compile(r"/resourceGroups/([^/?]+)", re.IGNORECASE)


def resolve_route(request: Request) -> Tuple[str, Dict[str, Any]]:
    """
    Match a request against the application's routes.

    Args:
        request: The inbound request, before routing

    Returns:
        (route name, path parameters); ("", {}) when no route fully matches
    """
    router = getattr(request.scope.get("app"), "router", None)
    for route in getattr(router, "routes", ()):
        match, child_scope = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "name", None) or "", dict(child_scope.get("path_params", {}))
    return "", {}


def _path_value(path_params: Mapping[str, Any], key: str, pattern: re.Pattern, path: str) -> str:
    value = path_params.get(key)
    if value:
        return str(value)
    match = pattern.search(path)
    return match.group(1) if match else ""


def operation_fields(request: Request) -> Dict[str, str]:
    """
    Resolve the operation details of a request.

    Routed path variables win; the /subscriptions and /resourceGroups
    segments of the path are used otherwise. A missing api-version is
    recorded as an empty string.

    Args:
        request: The inbound request

    Returns:
        RequestContext field name -> value
    """
    route_name, path_params = resolve_route(request)
    path = request.url.path
    return {
        "api_version": request.query_params.get(API_VERSION_PARAM, ""),
        "subscription_id": _path_value(path_params, SUBSCRIPTION_ID_PATH_PARAM, _SUBSCRIPTION_SEGMENT, path),
        "resource_group": _path_value(path_params, RESOURCE_GROUP_PATH_PARAM, _RESOURCE_GROUP_SEGMENT, path),
        "target_uri": str(request.url),
        "http_method": request.method,
        "route_name": route_name,
    }


def set_request_header(request: Request, name: str, value: str) -> None:
    """Replace an inbound header so later stages and the handler read value."""
    key = name.lower().encode("latin-1")
    headers = [(k, v) for k, v in request.scope["headers"] if k.lower() != key]
    headers.append((key, value.encode("latin-1")))
    request.scope["headers"] = headers
