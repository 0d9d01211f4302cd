"""JSON serialization utilities using orjson.

orjson handles datetime, date, time, UUID, dataclasses and pydantic-free
containers natively. The default handler below covers the remaining types
drivers hand back in rows and callers pass as parameters.
"""

import base64
import datetime
import decimal
import ipaddress
from typing import Any

import orjson
from pydantic import BaseModel


def _default_handler(obj: Any) -> Any:
    """
    Custom default handler for types orjson doesn't handle natively.

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation

    Raises:
        TypeError: If object cannot be serialized
    """
    # Decimal - keep precision by emitting the exact string
    if isinstance(obj, decimal.Decimal):
        return str(obj)

    # timedelta - convert to total seconds
    if isinstance(obj, datetime.timedelta):
        return obj.total_seconds()

    # bytes/bytearray/memoryview - try UTF-8 decode, fall back to base64
    if isinstance(obj, (bytes, bytearray, memoryview)):
        data = bytes(obj)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(data).decode("ascii")

    # Sets - convert to list
    if isinstance(obj, (set, frozenset)):
        return list(obj)

    # IP address types
    if isinstance(
        obj,
        (
            ipaddress.IPv4Address,
            ipaddress.IPv6Address,
            ipaddress.IPv4Network,
            ipaddress.IPv6Network,
        ),
    ):
        return str(obj)

    if isinstance(obj, BaseModel):
        return obj.model_dump()

    if isinstance(obj, BaseException):
        return f"{type(obj).__name__}: {obj}"

    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def dumps(obj: Any) -> str:
    """
    Serialize object to JSON string using orjson.

    Unserializable values are rendered with ``str`` rather than raising, so
    the result is always usable in log records.

    Args:
        obj: Object to serialize

    Returns:
        JSON string
    """
    try:
        return orjson.dumps(obj, default=_default_handler).decode("utf-8")
    except TypeError:
        return orjson.dumps(str(obj)).decode("utf-8")
