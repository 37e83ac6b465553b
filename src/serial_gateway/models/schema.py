"""
Field schema used to validate tokens received from the tags.

Every field the gateway understands is described by a FieldDescriptor: the short name used on
the wire, the name used when forwarding, the topics it may be forwarded on, whether it forces an
immediate send, and a parse function. Parse functions are synchronous and pure: they return the
typed value or raise ValueError with a human readable reason.
"""
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional

from ..utils.exceptions import ConfigurationError

Parser = Callable[[str], Any]


@dataclass(frozen=True)
class FieldDescriptor:
    short_name: str
    target_name: str
    topics: FrozenSet[str]
    force_send: bool
    parse: Parser


def _to_number(raw: str, label: str) -> Any:
    if raw.strip() == "":
        raise ValueError(f"Non-numeric {label}: {raw!r}")
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"Non-numeric {label}: {raw!r}") from None
    if not math.isfinite(value):
        raise ValueError(f"Non-finite {label}: {raw!r}")
    return value


def number_parser(label: str) -> Parser:
    def parse(raw: str) -> Any:
        return _to_number(raw, label)
    return parse


def hex_id_parser(label: str) -> Parser:
    def parse(raw: str) -> str:
        if raw == "" or len(raw) > 4:
            raise ValueError(f"{label} has to be at most 4 hex digits: {raw!r}")
        try:
            int(raw, 16)
        except ValueError:
            raise ValueError(f"{label} has to be at most 4 hex digits: {raw!r}") from None
        return raw
    return parse


def session_parser(label: str) -> Parser:
    def parse(raw: str) -> bool:
        if raw not in ("start", "end"):
            raise ValueError(f"{label} instruction not recognized: {raw!r}")
        return raw == "start"
    return parse


def pong_parser(label: str) -> Parser:
    def parse(raw: str) -> str:
        return "pong"
    return parse


def text_parser(label: str) -> Parser:
    def parse(raw: str) -> str:
        return raw
    return parse


def increment_parser(label: str, slot: int = 0) -> Parser:
    """Numeric increment placed in one slot of a three element vector"""
    if slot not in (0, 1, 2):
        raise ConfigurationError(f"Increment slot must be 0, 1 or 2, got {slot}")

    def parse(raw: str) -> List[Any]:
        vector: List[Any] = [0, 0, 0]
        vector[slot] = _to_number(raw, label)
        return vector
    return parse


def triple_parser(label: str) -> Parser:
    def parse(raw: str) -> List[Any]:
        parts = raw.split(";")
        if len(parts) != 3:
            raise ValueError(f"{label} needs three arguments: {raw!r}")
        return [_to_number(part, label) for part in parts]
    return parse


PARSER_KINDS: Dict[str, Callable[..., Parser]] = {
    "number": number_parser,
    "hex_id": hex_id_parser,
    "session": session_parser,
    "pong": pong_parser,
    "text": text_parser,
    "increment": increment_parser,
    "triple": triple_parser,
}


def build_parser(kind: str, label: str, slot: Optional[int] = None) -> Parser:
    factory = PARSER_KINDS.get(kind)
    if factory is None:
        raise ConfigurationError(f"Unknown parser kind: {kind}")
    if kind == "increment":
        return factory(label, slot or 0)
    return factory(label)


class SchemaRegistry:
    """Ordered collection of field descriptors, unique by short name"""

    def __init__(self, descriptors: Iterable[FieldDescriptor]):
        self._descriptors: Dict[str, FieldDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.short_name in self._descriptors:
                raise ConfigurationError(f"Duplicate field short name: {descriptor.short_name}")
            self._descriptors[descriptor.short_name] = descriptor

    def get(self, short_name: str) -> Optional[FieldDescriptor]:
        return self._descriptors.get(short_name)

    def __contains__(self, short_name: str) -> bool:
        return short_name in self._descriptors

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)
