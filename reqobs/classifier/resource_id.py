"""
Parser for hierarchical resource identifiers.

Accepted shape, matched case-insensitively on the fixed keywords:

    /subscriptions/{id}
        [/resourceGroups/{name}]
        [/providers/{namespace}/{type}/{name}[/{childType}/{name}...]]

Extension resources may nest a further ``providers/{namespace}`` block.
Subscription-level children without a provider block (for example
``/subscriptions/{id}/locations/{name}``) are accepted as pairs.
"""

from typing import List, NamedTuple

from ..core.exceptions import ResourceIdParseError

SUBSCRIPTIONS_SEGMENT = "subscriptions"
RESOURCE_GROUPS_SEGMENT = "resourcegroups"
PROVIDERS_SEGMENT = "providers"

RESOURCES_NAMESPACE = "Microsoft.Resources"


class ResourceId(NamedTuple):
    """Parsed identifier: fully qualified type and the last resource name."""

    resource_type: str
    name: str


def trim_to_subscription(path: str) -> str:
    """Return path from the first "/subscriptions" onward, or path unchanged."""
    idx = path.lower().find("/" + SUBSCRIPTIONS_SEGMENT)
    if idx == -1:
        return path
    return path[idx:]


def parse_resource_id(path: str) -> ResourceId:
    """
    Parse a resource identifier path.

    Args:
        path: URL path starting with /subscriptions; no query string

    Returns:
        ResourceId with the fully qualified resource type and name

    Raises:
        ResourceIdParseError: If the path is not a complete resource identifier
    """
    segments = [s for s in path.split("/") if s != ""]
    if not segments or segments[0].lower() != SUBSCRIPTIONS_SEGMENT:
        raise ResourceIdParseError(f"resource id must start with /subscriptions: {path!r}")
    if len(segments) < 2:
        raise ResourceIdParseError(f"missing subscription id: {path!r}")

    types: List[str] = [RESOURCES_NAMESPACE, "subscriptions"]
    name = segments[1]
    rest = segments[2:]

    if len(rest) >= 1 and rest[0].lower() == RESOURCE_GROUPS_SEGMENT:
        if len(rest) < 2:
            raise ResourceIdParseError(f"missing resource group name: {path!r}")
        types = [RESOURCES_NAMESPACE, "resourceGroups"]
        name = rest[1]
        rest = rest[2:]

    while rest:
        if rest[0].lower() == PROVIDERS_SEGMENT:
            if len(rest) < 2:
                raise ResourceIdParseError(f"missing provider namespace: {path!r}")
            types = [rest[1]]
            rest = rest[2:]
            if not rest:
                raise ResourceIdParseError(f"missing resource type after provider: {path!r}")
            continue

        if len(rest) < 2:
            raise ResourceIdParseError(f"resource type {rest[0]!r} has no name: {path!r}")
        types.append(rest[0])
        name = rest[1]
        rest = rest[2:]

    return ResourceId(resource_type="/".join(types), name=name)
