"""
Call Classifier Package.

Maps an HTTP verb and URL to a normalized operation label, consumed by
request logging and the audit emitter.

Components:
- resource_id: Parser for /subscriptions/... resource identifiers
- classifier: classify(), describe() and trim_url()
"""

from .classifier import (
    OperationKind,
    ResourceDescriptor,
    classify,
    describe,
    normalize_resource_type,
    trim_url,
)
from .resource_id import ResourceId, parse_resource_id


__all__ = [
    "OperationKind",
    "ResourceDescriptor",
    "ResourceId",
    "classify",
    "describe",
    "normalize_resource_type",
    "parse_resource_id",
    "trim_url",
]
