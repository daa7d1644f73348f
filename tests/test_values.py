"""Tests for the storylua value model."""
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import math

import pytest
from storylua.runtime.values import (
    LuaValue, array_length, boolean, from_value, is_truthy, nil, number,
    raw_equals, string, table, table_key, to_value, tostring,
)


class TestConversion:
    @pytest.mark.parametrize('host', [None, True, False, 0, 42, -7, 3.5, "", "hi"])
    def test_primitive_round_trip(self, host):
        assert from_value(to_value(host)) == host

    def test_integral_numbers_come_back_as_int(self):
        assert isinstance(from_value(to_value(42)), int)
        assert isinstance(from_value(number(2.5)), float)

    def test_list_becomes_one_based_table(self):
        value = to_value(["a", "b"])
        assert value.type == 'table'
        assert set(value.value) == {"1", "2"}
        assert from_value(value) == {"1": "a", "2": "b"}

    def test_nested_mapping(self):
        value = to_value({"hero": {"hp": 10}})
        assert from_value(value) == {"hero": {"hp": 10}}

    def test_numeric_mapping_keys_are_stringified(self):
        assert set(to_value({1: "x", 2.5: "y"}).value) == {"1", "2.5"}

    def test_passthrough(self):
        v = string("x")
        assert to_value(v) is v

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            to_value(object())


class TestHelpers:
    def test_truthiness(self):
        assert not is_truthy(nil())
        assert not is_truthy(boolean(False))
        assert is_truthy(number(0))
        assert is_truthy(string(""))
        assert is_truthy(table())

    def test_tostring(self):
        assert tostring(number(3.0)) == '3'
        assert tostring(number(2.5)) == '2.5'
        assert tostring(number(-0.5)) == '-0.5'
        assert tostring(number(math.inf)) == 'inf'
        assert tostring(number(-math.inf)) == '-inf'
        assert tostring(number(math.nan)) == 'nan'
        assert tostring(nil()) == 'nil'
        assert tostring(boolean(True)) == 'true'
        assert tostring(table()) == 'table'

    def test_strict_equality(self):
        assert raw_equals(number(1), number(1.0))
        assert not raw_equals(number(1), string("1"))
        assert not raw_equals(boolean(True), number(1))
        assert number(2) == number(2)

    def test_tables_compare_by_identity(self):
        t = table()
        assert raw_equals(t, t)
        assert not raw_equals(table(), table())

    def test_table_key(self):
        assert table_key(number(2)) == "2"
        assert table_key(number(2.5)) == "2.5"
        assert table_key(string("name")) == "name"

    def test_array_length_stops_at_first_hole(self):
        entries = {"1": number(1), "2": number(2), "4": number(4)}
        assert array_length(entries) == 2
        assert array_length({}) == 0

    def test_values_are_unhashable(self):
        with pytest.raises(TypeError):
            hash(LuaValue('number', 1.0))
