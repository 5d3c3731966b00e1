"""
Protobuf adapter for the redaction engine.

Field loggability is read from the field options of the message
descriptor. When an extension is given (a boolean FieldOptions
extension such as ``loggable``), its value decides; a field without the
extension set has no policy. Without an extension the standard
``debug_redact`` option is used: ``debug_redact = true`` marks a field
as not loggable.
"""

import logging
from typing import Any, Dict, Optional

from google.protobuf import json_format
from google.protobuf.descriptor import Descriptor, FieldDescriptor
from google.protobuf.message import Message

from .engine import redact
from .policy import FieldKind, FieldPolicy, MessagePolicy

logger = logging.getLogger(__name__)


class ProtobufMessagePolicy(MessagePolicy):
    """
    MessagePolicy backed by a protobuf message descriptor.

    Fields are resolved by JSON name first, then by proto field name, so
    both MessageToDict output styles work.
    """

    def __init__(self, descriptor: Descriptor, extension: Optional[FieldDescriptor] = None):
        self.descriptor = descriptor
        self.extension = extension
        self._by_json_name: Dict[str, FieldDescriptor] = {
            fd.json_name: fd for fd in descriptor.fields
        }
        self._nested: Dict[str, "ProtobufMessagePolicy"] = {}

    def _field_descriptor(self, field_name: str) -> Optional[FieldDescriptor]:
        fd = self._by_json_name.get(field_name)
        if fd is None:
            fd = self.descriptor.fields_by_name.get(field_name)
        return fd

    def _loggable(self, fd: FieldDescriptor) -> Optional[bool]:
        options = fd.GetOptions()
        if self.extension is not None:
            if options.HasExtension(self.extension):
                return bool(options.Extensions[self.extension])
            return None

        try:
            if options.HasField("debug_redact") and options.debug_redact:
                return False
        except ValueError:
            # Runtime predates the debug_redact option
            return None
        return None

    def _nested_policy(self, descriptor: Descriptor) -> "ProtobufMessagePolicy":
        policy = self._nested.get(descriptor.full_name)
        if policy is None:
            policy = ProtobufMessagePolicy(descriptor, self.extension)
            self._nested[descriptor.full_name] = policy
        return policy

    def lookup(self, field_name: str) -> Optional[FieldPolicy]:
        fd = self._field_descriptor(field_name)
        if fd is None:
            return None

        message_type = fd.message_type
        if message_type is None:
            return FieldPolicy(name=field_name, loggable=self._loggable(fd))
        if message_type.GetOptions().map_entry:
            return FieldPolicy(name=field_name, loggable=self._loggable(fd), kind=FieldKind.MAP)
        return FieldPolicy(
            name=field_name,
            loggable=self._loggable(fd),
            kind=FieldKind.MESSAGE,
            message_policy=self._nested_policy(message_type),
        )


def message_to_dict(message: Message) -> Optional[Dict[str, Any]]:
    """
    Decode a protobuf message to a JSON-style dict.

    Returns:
        The decoded message, or None if it could not be decoded
    """
    try:
        return json_format.MessageToDict(message)
    except Exception as e:
        logger.error(f"Failed to decode {type(message).__name__} for logging: {e}")
        return None


def redact_message(message: Any, extension: Optional[FieldDescriptor] = None) -> Optional[Dict[str, Any]]:
    """
    Decode and redact a protobuf message for logging.

    Args:
        message: A protobuf message; anything else yields None
        extension: Optional boolean FieldOptions extension marking loggability

    Returns:
        Redacted dict keyed by JSON field names, or None
    """
    if not isinstance(message, Message):
        return None
    data = message_to_dict(message)
    if data is None:
        return None
    return redact(data, ProtobufMessagePolicy(message.DESCRIPTOR, extension))
