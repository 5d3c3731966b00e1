"""
Field Redaction Package.

Components:
- policy: FieldPolicy, MessagePolicy and the declarative DictMessagePolicy
- engine: redact(), the recursive pruning of non-loggable fields
- protobuf: ProtobufMessagePolicy and redact_message() for protobuf messages
"""

from .engine import redact
from .policy import DictMessagePolicy, FieldKind, FieldPolicy, MessagePolicy
from .protobuf import ProtobufMessagePolicy, message_to_dict, redact_message


__all__ = [
    "redact",
    "DictMessagePolicy",
    "FieldKind",
    "FieldPolicy",
    "MessagePolicy",
    "ProtobufMessagePolicy",
    "message_to_dict",
    "redact_message",
]
