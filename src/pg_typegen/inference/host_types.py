"""Postgres type -> Python host type rules."""
from __future__ import annotations
import re
from typing import Iterable

from pg_typegen.introspect.catalog import CatalogIntrospector, PgType
from pg_typegen.introspect.type_samples import UNKNOWN_HOST_TYPE, TypeSampleResolver

# Types asyncpg decodes to a known Python type out of the box, keyed by typname
DIRECT_HOST_TYPES: dict[str, str] = {
    "bool": "bool",
    "int2": "int",
    "int4": "int",
    "int8": "int",
    "oid": "int",
    "float4": "float",
    "float8": "float",
    "numeric": "decimal.Decimal",
    "money": "str",
    "text": "str",
    "varchar": "str",
    "bpchar": "str",
    "char": "str",
    "name": "str",
    "citext": "str",
    "xml": "str",
    "json": "str",
    "jsonb": "str",
    "jsonpath": "str",
    "bytea": "bytes",
    "uuid": "uuid.UUID",
    "date": "datetime.date",
    "timestamp": "datetime.datetime",
    "timestamptz": "datetime.datetime",
    "time": "datetime.time",
    "timetz": "datetime.time",
    "interval": "datetime.timedelta",
    "inet": "ipaddress.IPv4Interface | ipaddress.IPv6Interface | ipaddress.IPv4Address | ipaddress.IPv6Address",
    "cidr": "ipaddress.IPv4Network | ipaddress.IPv6Network",
    "void": "None",
}

# Modules a rendered host type may reference
IMPORTABLE_MODULES = ("datetime", "decimal", "ipaddress", "typing", "uuid")

_MODULE_REF = re.compile(r"\b([a-z_]+)\.[A-Za-z_]")


class HostTypeResolver:
    """Resolves type OIDs to host type expressions.

    Order: user overrides, direct rules, sampled decoders, ``unknown``.
    Domains follow their base type, arrays become ``list[...]`` and enums ``str``.
    """

    def __init__(
        self,
        catalog: CatalogIntrospector,
        samples: TypeSampleResolver | None = None,
        overrides: dict[str, str] | None = None,
    ):
        self.catalog = catalog
        self.samples = samples
        self.overrides = dict(overrides or {})

    def resolve(self, oid: int) -> str:
        return self._resolve(oid, depth=0)

    def _resolve(self, oid: int, depth: int) -> str:
        pg_type = self.catalog.pg_type(oid)
        if pg_type is None or depth > 8:
            return UNKNOWN_HOST_TYPE

        for key in (pg_type.typname, pg_type.regtype):
            if key in self.overrides:
                return self.overrides[key]

        direct = DIRECT_HOST_TYPES.get(pg_type.typname)
        if direct is not None:
            return direct

        sampled = self.samples.resolve(pg_type.typname) if self.samples else None
        if sampled is not None and sampled != UNKNOWN_HOST_TYPE:
            return sampled

        return self._structural(pg_type, depth)

    def _structural(self, pg_type: PgType, depth: int) -> str:
        if pg_type.typtype == "d" and pg_type.base_oid:
            return self._resolve(pg_type.base_oid, depth + 1)
        if pg_type.category == "A" and pg_type.elem_oid:
            element = self._resolve(pg_type.elem_oid, depth + 1)
            if element == UNKNOWN_HOST_TYPE:
                return UNKNOWN_HOST_TYPE
            return f"list[{element}]"
        if pg_type.typtype == "e" or pg_type.category == "E":
            return "str"
        return UNKNOWN_HOST_TYPE


def required_imports(host_types: Iterable[str]) -> list[str]:
    """Modules referenced by the given host type expressions, sorted."""
    modules = set()
    for host_type in host_types:
        for module in _MODULE_REF.findall(host_type):
            if module in IMPORTABLE_MODULES:
                modules.add(module)
    return sorted(modules)
