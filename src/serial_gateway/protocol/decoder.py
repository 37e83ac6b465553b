from typing import List, Tuple

from ..models.messages import DecodeResult, DecodedField
from ..models.schema import SchemaRegistry
from ..utils.exceptions import FieldDecodeError
from ..utils.logging import get_logger
from .framing import strip_padding

logger = get_logger(__name__)

ID_FIELD = "id"


def tokenize(text: str, token_separator: str = ",", value_separator: str = ":") -> List[Tuple[str, str]]:
    """
    Split a frame payload into (short_name, raw_value) tokens.

    Example: "id:01A2,temp:23.5" -> [("id", "01A2"), ("temp", "23.5")]
    """
    tokens = []
    for part in text.split(token_separator):
        part = part.strip()
        if value_separator not in part:
            if part:
                logger.debug(f"Ignoring malformed token: {part!r}")
            continue
        name, raw = part.split(value_separator, 1)
        tokens.append((name.strip(), raw.strip()))
    return tokens


class Decoder:
    """Turns frame payloads into typed fields using the schema registry"""

    def __init__(self, registry: SchemaRegistry, internal_topic: str = "commands",
                 token_separator: str = ",", value_separator: str = ":"):
        self.registry = registry
        self.internal_topic = internal_topic
        self.token_separator = token_separator
        self.value_separator = value_separator

    def decode(self, frame: bytes) -> DecodeResult:
        text = strip_padding(frame).decode("ascii", errors="replace")
        tokens = tokenize(text, self.token_separator, self.value_separator)
        result = DecodeResult()

        # The id is picked first since it addresses every other field of the frame
        for name, raw in tokens:
            if name != ID_FIELD:
                continue
            descriptor = self.registry.get(ID_FIELD)
            if descriptor is None:
                result.address = raw
                break
            try:
                result.address = descriptor.parse(raw)
            except ValueError as e:
                result.errors.append(FieldDecodeError(name, raw, str(e)))
            break

        for name, raw in tokens:
            if name == ID_FIELD:
                continue
            descriptor = self.registry.get(name)
            if descriptor is None:
                continue
            try:
                value = descriptor.parse(raw)
            except ValueError as e:
                result.errors.append(FieldDecodeError(name, raw, str(e)))
                continue

            if self.internal_topic in descriptor.topics:
                result.commands[descriptor.short_name] = value
            else:
                result.fields.append(DecodedField(
                    target_name=descriptor.target_name,
                    value=value,
                    topics=descriptor.topics,
                    force_send=descriptor.force_send,
                ))
        return result
