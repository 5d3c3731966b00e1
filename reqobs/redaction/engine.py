"""
Recursive field redaction for decoded messages.

redact() never modifies its input and never raises: any failure while
looking up or descending into a field keeps that field as-is.
"""

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from .policy import FieldKind, FieldPolicy, MessagePolicy

logger = logging.getLogger(__name__)


def _copy(value: Any) -> Any:
    try:
        return copy.deepcopy(value)
    except Exception as e:
        logger.debug(f"Could not copy value of type {type(value).__name__}, keeping reference: {e}")
        return value


def _redact_list(values: List[Any], policy: MessagePolicy) -> List[Any]:
    return [
        _redact_map(item, policy) if isinstance(item, Mapping) else _copy(item)
        for item in values
    ]


def _redact_field(value: Any, field: FieldPolicy) -> Any:
    if field.kind is not FieldKind.MESSAGE or field.message_policy is None:
        return _copy(value)
    if isinstance(value, Mapping):
        return _redact_map(value, field.message_policy)
    if isinstance(value, list):
        return _redact_list(value, field.message_policy)
    return _copy(value)


def _redact_map(data: Mapping[str, Any], policy: MessagePolicy) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for name, value in data.items():
        try:
            field = policy.lookup(name)
        except Exception as e:
            logger.debug(f"Policy lookup failed for field '{name}', keeping it: {e}")
            field = None

        if field is None:
            result[name] = _copy(value)
            continue

        if field.loggable is False:
            continue

        try:
            result[name] = _redact_field(value, field)
        except Exception as e:
            logger.debug(f"Redaction failed for field '{name}', keeping it: {e}")
            result[name] = _copy(value)
    return result


def redact(data: Optional[Mapping[str, Any]], policy: Optional[MessagePolicy]) -> Optional[Any]:
    """
    Remove every field whose policy is explicitly not loggable.

    Fields without a policy are kept. Sub-messages (and lists of them)
    are redacted recursively with their own policy; map-typed fields are
    passed through untouched. Values are never converted.

    Args:
        data: Message decoded to a nested string-keyed mapping
        policy: Policy of the top-level message type

    Returns:
        A new redacted structure; None for None input
    """
    if data is None:
        return None
    if policy is None or not isinstance(data, Mapping):
        return _copy(data)
    return _redact_map(data, policy)
