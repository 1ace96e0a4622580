"""Host type resolution by sampling registered decoders.

A decoder is any callable that turns the text representation of a Postgres
value into a Python value (the shape asyncpg ``set_type_codec(..., format="text")``
decoders take). Feeding each decoder one sample known to be valid for its type
and classifying the result tells us which Python type the client will hand back.
"""
from __future__ import annotations
import datetime
import decimal
import logging
import uuid
from types import MappingProxyType
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

UNKNOWN_HOST_TYPE = "unknown"

# pg_type.typname -> text input known to decode correctly for that type
DEFAULT_SAMPLE_VALUES: Mapping[str, str] = MappingProxyType({
    "int2": "0",
    "int4": "0",
    "int8": "0",
    "smallint": "0",
    "integer": "0",
    "bigint": "0",
    "serial": "0",
    "bigserial": "0",
    "numeric": "0",
    "decimal": "0",
    "float4": "0",
    "float8": "0",
    "bool": "t",
    "date": "2000-01-01",
    "time": "00:00:00",
    "timetz": "00:00:00+00",
    "timestamp": "2000-01-01 00:00:00",
    "timestamptz": "2000-01-01 00:00:00+00",
    "interval": "1 hour",
    "money": "$0.00",
    "varchar": "",
    "text": "",
    "uuid": "00000000-0000-0000-0000-000000000000",
    "json": "{}",
    "jsonb": "{}",
})

# Order matters: bool before int, datetime before date.
HOST_TYPE_MATCHERS: list[tuple[str, Callable[[Any], bool]]] = [
    ("bool", lambda v: isinstance(v, bool)),
    ("int", lambda v: isinstance(v, int)),
    ("float", lambda v: isinstance(v, float)),
    ("decimal.Decimal", lambda v: isinstance(v, decimal.Decimal)),
    ("str", lambda v: isinstance(v, str)),
    ("bytes", lambda v: isinstance(v, (bytes, bytearray, memoryview))),
    ("datetime.datetime", lambda v: isinstance(v, datetime.datetime)),
    ("datetime.date", lambda v: isinstance(v, datetime.date)),
    ("datetime.time", lambda v: isinstance(v, datetime.time)),
    ("datetime.timedelta", lambda v: isinstance(v, datetime.timedelta)),
    ("uuid.UUID", lambda v: isinstance(v, uuid.UUID)),
    ("dict", lambda v: isinstance(v, dict)),
    ("list", lambda v: isinstance(v, list)),
]


def classify_value(value: Any) -> str:
    """Return the host type name of a decoded value, or ``unknown``."""
    for host_type, matches in HOST_TYPE_MATCHERS:
        if matches(value):
            return host_type
    return UNKNOWN_HOST_TYPE


class TypeSampleResolver:
    """Maps Postgres type names to host types via their registered decoders."""

    def __init__(
        self,
        type_parsers: Mapping[str, Callable[[str], Any]],
        sample_values: Mapping[str, str] = DEFAULT_SAMPLE_VALUES,
        default_sample: str = "",
    ):
        self.sample_values = dict(sample_values)
        self.default_sample = default_sample
        self._table = {
            type_name: self._infer(type_name, decoder)
            for type_name, decoder in type_parsers.items()
        }

    def _infer(self, type_name: str, decoder: Callable[[str], Any]) -> str:
        sample = self.sample_values.get(type_name, self.default_sample)
        try:
            value = decoder(sample)
        except Exception as e:
            logger.debug(f"Decoder for {type_name} rejected sample {sample!r}: {e}")
            return UNKNOWN_HOST_TYPE
        return classify_value(value)

    def resolve(self, type_name: str) -> str | None:
        """Host type for a type name, or None when no decoder is registered."""
        return self._table.get(type_name)

    def table(self) -> dict[str, str]:
        """The full ``typname -> host type`` table."""
        return dict(self._table)
