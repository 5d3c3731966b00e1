"""
Ordered attribute set carried by context loggers.
"""

from typing import Any, Dict, Iterator, Mapping, Optional


class LogAttributeSet(Mapping[str, Any]):
    """
    Ordered key/value attributes contributed by pipeline stages.

    The set is never modified in place. Stages layer their contribution
    with with_attributes(), which returns a new set: new keys are
    appended, existing keys keep their position and take the later value.
    There is no way to remove a key.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Optional[Mapping[str, Any]] = None):
        self._items: Dict[str, Any] = dict(items or {})

    def with_attributes(self, *layers: Mapping[str, Any], **attrs: Any) -> "LogAttributeSet":
        """
        Return a new set with the given layers applied in order.

        Args:
            *layers: Mappings applied left to right
            **attrs: Applied last

        Returns:
            A new LogAttributeSet
        """
        merged = dict(self._items)
        for layer in layers:
            if layer:
                merged.update(layer)
        merged.update(attrs)
        return LogAttributeSet(merged)

    def as_dict(self) -> Dict[str, Any]:
        """Return a shallow copy of the attributes in order."""
        return dict(self._items)

    def __getitem__(self, key: str) -> Any:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"LogAttributeSet({self._items!r})"
