"""
Field loggability policy.

A MessagePolicy answers, for one message type, whether a field may be
logged and how to descend into it. Policies come from an external schema
system; DictMessagePolicy is the declarative adapter and
reqobs.redaction.protobuf provides the protobuf descriptor adapter.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Union


class FieldKind(str, Enum):
    """Shape of a field's value."""

    SCALAR = "scalar"
    MESSAGE = "message"
    MAP = "map"


@dataclass(frozen=True)
class FieldPolicy:
    """
    Loggability of one field.

    Attributes:
        name: Field name as it appears in the decoded message
        loggable: True, False, or None when the schema says nothing
        kind: Scalar, sub-message or map-typed field
        message_policy: Policy of the sub-message, for MESSAGE fields
    """

    name: str
    loggable: Optional[bool] = None
    kind: FieldKind = FieldKind.SCALAR
    message_policy: Optional["MessagePolicy"] = None


class MessagePolicy(ABC):
    """Per message-type field policy lookup."""

    @abstractmethod
    def lookup(self, field_name: str) -> Optional[FieldPolicy]:
        """
        Return the policy for a field.

        Args:
            field_name: Key in the decoded message

        Returns:
            FieldPolicy, or None if the message type has no such field
        """


PolicySpec = Union[None, bool, Mapping[str, Any]]


class DictMessagePolicy(MessagePolicy):
    """
    MessagePolicy backed by an in-memory mapping of FieldPolicy entries.

    Example:
        policy = DictMessagePolicy.from_dict({
            "name": True,
            "password": False,
            "address": {"loggable": True, "fields": {"street": False}},
            "labels": {"kind": "map"},
        })
    """

    def __init__(self, fields: Iterable[FieldPolicy] = ()):
        self._fields: Dict[str, FieldPolicy] = {f.name: f for f in fields}

    def lookup(self, field_name: str) -> Optional[FieldPolicy]:
        return self._fields.get(field_name)

    @classmethod
    def from_dict(cls, spec: Mapping[str, PolicySpec]) -> "DictMessagePolicy":
        """
        Build a policy from a compact nested mapping.

        A field maps to a bool or None (scalar with that loggable flag),
        or to a dict with optional "loggable", "kind" and "fields" keys.
        A dict with "fields" describes a sub-message.

        Args:
            spec: Field name -> field spec

        Returns:
            DictMessagePolicy
        """
        fields = []
        for name, value in spec.items():
            if value is None or isinstance(value, bool):
                fields.append(FieldPolicy(name=name, loggable=value))
                continue

            nested = value.get("fields")
            kind = FieldKind(value.get("kind", FieldKind.MESSAGE if nested is not None else FieldKind.SCALAR))
            fields.append(
                FieldPolicy(
                    name=name,
                    loggable=value.get("loggable"),
                    kind=kind,
                    message_policy=cls.from_dict(nested) if nested is not None else None,
                )
            )
        return cls(fields)
