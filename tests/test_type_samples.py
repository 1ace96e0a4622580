"""Tests for host type resolution by decoder sampling."""
import datetime
import decimal
import json
import uuid

from pg_typegen.introspect.type_samples import (
    DEFAULT_SAMPLE_VALUES,
    UNKNOWN_HOST_TYPE,
    TypeSampleResolver,
    classify_value,
)


class TestClassifyValue:
    """Ordered predicates: the first match wins."""

    def test_bool_before_int(self):
        assert classify_value(True) == "bool"
        assert classify_value(0) == "int"

    def test_datetime_before_date(self):
        assert classify_value(datetime.datetime(2000, 1, 1)) == "datetime.datetime"
        assert classify_value(datetime.date(2000, 1, 1)) == "datetime.date"

    def test_scalars(self):
        assert classify_value(1.5) == "float"
        assert classify_value(decimal.Decimal("1")) == "decimal.Decimal"
        assert classify_value("x") == "str"
        assert classify_value(b"x") == "bytes"
        assert classify_value(datetime.time(1)) == "datetime.time"
        assert classify_value(datetime.timedelta(hours=1)) == "datetime.timedelta"
        assert classify_value(uuid.UUID(int=0)) == "uuid.UUID"
        assert classify_value({"a": 1}) == "dict"
        assert classify_value([1]) == "list"

    def test_unknown(self):
        assert classify_value(None) == UNKNOWN_HOST_TYPE
        assert classify_value(object()) == UNKNOWN_HOST_TYPE


class TestTypeSampleResolver:
    """Decoders are fed one known-good sample per type."""

    def test_resolves_registered_decoders(self):
        resolver = TypeSampleResolver({
            "int8": int,
            "date": datetime.date.fromisoformat,
            "jsonb": json.loads,
            "interval": lambda text: datetime.timedelta(hours=1),
        })

        assert resolver.resolve("int8") == "int"
        assert resolver.resolve("date") == "datetime.date"
        assert resolver.resolve("jsonb") == "dict"
        assert resolver.resolve("interval") == "datetime.timedelta"

    def test_unregistered_type_is_none(self):
        resolver = TypeSampleResolver({"int8": int})
        assert resolver.resolve("int4") is None

    def test_failing_decoder_is_unknown(self):
        """A type with no sample gets the empty string, which int() rejects."""
        resolver = TypeSampleResolver({"mystery": int})
        assert resolver.resolve("mystery") == UNKNOWN_HOST_TYPE

    def test_explicit_sample_table(self):
        """Tests can supply their own samples; nothing is shared between resolvers."""
        custom = TypeSampleResolver({"mystery": int}, sample_values={"mystery": "42"})
        default = TypeSampleResolver({"mystery": int})

        assert custom.resolve("mystery") == "int"
        assert default.resolve("mystery") == UNKNOWN_HOST_TYPE

    def test_table(self):
        resolver = TypeSampleResolver({"int8": int, "text": str})
        assert resolver.table() == {"int8": "int", "text": "str"}

    def test_default_samples_decode(self):
        """Every default sample is accepted by the obvious decoder."""
        assert datetime.date.fromisoformat(DEFAULT_SAMPLE_VALUES["date"]) == datetime.date(2000, 1, 1)
        assert int(DEFAULT_SAMPLE_VALUES["int8"]) == 0
        assert uuid.UUID(DEFAULT_SAMPLE_VALUES["uuid"]).int == 0
        assert json.loads(DEFAULT_SAMPLE_VALUES["jsonb"]) == {}
