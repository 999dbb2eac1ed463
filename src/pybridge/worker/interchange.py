"""Value translation between host values and the interchange text format.

Values cross the channel as text. Outbound values are rendered as literals
the companion can parse (``true``/``false``, ``null``, bracketed lists,
quoted strings, decimal numbers), all of which are also valid JSON.
Inbound values arrive as JSON documents.

Both directions go through a closed set of variants so every host type
that can cross the boundary is listed in one place:

    Null, Boolean, Number, String, ListValue, KeyValueList

Inbound objects have no host map type to land in; they decode to a list of
``[key, value]`` pairs in document order. All inbound numbers decode to
``float``.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

from ..errors import ProtocolError

logger = logging.getLogger(__name__)

# Integral floats below this magnitude are rendered without a fractional part
_EXACT_INT_LIMIT = 2**53


@dataclass(frozen=True)
class Null:
    pass


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class String:
    value: str


@dataclass(frozen=True)
class ListValue:
    items: tuple["InterchangeValue", ...] = ()


@dataclass(frozen=True)
class KeyValueList:
    pairs: tuple[tuple[str, "InterchangeValue"], ...] = ()


InterchangeValue = Null | Boolean | Number | String | ListValue | KeyValueList


def to_interchange(value: Any) -> InterchangeValue:
    """Convert a host value to its interchange variant.

    Raises:
        TypeError: If the value has no interchange representation
        ValueError: If an integer is beyond the range of a float
    """
    match value:
        case None:
            return Null()
        case bool():
            return Boolean(value)
        case int() | float():
            try:
                return Number(float(value))
            except OverflowError as e:
                raise ValueError(f"Integer too large to send as a number: {value.bit_length()} bits") from e
        case str():
            return String(value)
        case list() | tuple():
            return ListValue(tuple(to_interchange(item) for item in value))
        case dict():
            pairs = []
            for key, item in value.items():
                if not isinstance(key, str):
                    raise TypeError(f"Mapping keys must be strings, got {type(key).__name__}")
                pairs.append((key, to_interchange(item)))
            return KeyValueList(tuple(pairs))
        case _:
            raise TypeError(f"Cannot convert {type(value).__name__} to an interchange value")


def from_interchange(value: InterchangeValue) -> Any:
    """Convert an interchange variant to a host value."""
    match value:
        case Null():
            return None
        case Boolean(value=flag):
            return flag
        case Number(value=number):
            return number
        case String(value=text):
            return text
        case ListValue(items=items):
            return [from_interchange(item) for item in items]
        case KeyValueList(pairs=pairs):
            return [[key, from_interchange(item)] for key, item in pairs]
        case _:
            raise TypeError(f"Unknown interchange value: {value!r}")


def _dump_number(number: float) -> str:
    if not math.isfinite(number):
        raise ValueError(f"Cannot send non-finite number: {number}")
    if number.is_integer() and abs(number) < _EXACT_INT_LIMIT:
        return str(int(number))
    return repr(number)


def encode(value: InterchangeValue) -> str:
    """Render an interchange variant as text for the companion."""
    match value:
        case Null():
            return "null"
        case Boolean(value=flag):
            return "true" if flag else "false"
        case Number(value=number):
            return _dump_number(number)
        case String(value=text):
            return json.dumps(text, ensure_ascii=False)
        case ListValue(items=items):
            return "[" + ", ".join(encode(item) for item in items) + "]"
        case KeyValueList(pairs=pairs):
            body = ", ".join(
                f"{json.dumps(key, ensure_ascii=False)}: {encode(item)}" for key, item in pairs
            )
            return "{" + body + "}"
        case _:
            raise TypeError(f"Unknown interchange value: {value!r}")


def _to_float(number: int | float) -> float:
    try:
        return float(number)
    except OverflowError:
        return math.inf if number > 0 else -math.inf


def from_json(document: Any) -> InterchangeValue:
    """Convert a parsed JSON document to an interchange variant."""
    match document:
        case None:
            return Null()
        case bool():
            return Boolean(document)
        case int() | float():
            return Number(_to_float(document))
        case str():
            return String(document)
        case list():
            return ListValue(tuple(from_json(item) for item in document))
        case dict():
            return KeyValueList(tuple((key, from_json(item)) for key, item in document.items()))
        case _:
            raise TypeError(f"Unexpected JSON value: {document!r}")


def decode(text: str) -> InterchangeValue:
    """Parse interchange text received from the companion.

    Empty text is treated as an absent value.

    Raises:
        ProtocolError: If the text is not a valid JSON document
    """
    if not text.strip():
        return Null()
    try:
        document = json.loads(text)
    except ValueError as e:
        # json.JSONDecodeError is a ValueError subclass
        logger.debug(f"Malformed interchange text: {text[:80]!r}")
        raise ProtocolError(f"Invalid interchange text: {e}") from e
    return from_json(document)


def to_interchange_text(value: Any) -> str:
    """Render a host value as text for the companion."""
    return encode(to_interchange(value))


def from_interchange_text(text: str) -> Any:
    """Decode interchange text from the companion into a host value."""
    return from_interchange(decode(text))
