"""Small helpers shared by the fallback chains.

Each chain returns a ``Resolved`` pair so callers (and tests) can see which
source produced a value.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Resolved(Generic[T]):
    value: Optional[T]
    source: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.value is not None


NOT_FOUND: Resolved = Resolved(None, None)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == [] or value == {}


def dig(node: Any, *path: Any) -> Any:
    """Walk dicts and lists by key/index, returning None on the first miss"""
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or not -len(node) <= step < len(node):
                return None
            node = node[step]
        else:
            if not isinstance(node, dict):
                return None
            node = node.get(step)
        if node is None:
            return None
    return node


def first_of(source: Dict[str, Any], keys: Iterable[str]) -> Resolved:
    """First non-blank value among ``keys``, tagged with the key it came from"""
    if not isinstance(source, dict):
        return NOT_FOUND
    for key in keys:
        value = source.get(key)
        if not is_blank(value):
            return Resolved(value, key)
    return NOT_FOUND


def first_list(*candidates: Any) -> List[Any]:
    for candidate in candidates:
        if isinstance(candidate, list) and candidate:
            return candidate
    return []
