"""
Tests for logical field resolution.
"""

from __future__ import annotations

from core.ingestion.resolver import matched_column, resolve_field


class TestResolveField:
    """Tests for resolve_field."""

    def test_logical_name_first(self):
        row = {"price": "1", "cost": "2"}
        assert resolve_field(row, "price") == "1"

    def test_alias_fallback_in_order(self):
        row = {"complex_id": "b", "complexExternalId": "a"}
        assert resolve_field(row, "building_external_id") == "a"

    def test_explicit_mapping_wins(self):
        row = {"price": "1", "Cost RUB": "2"}
        assert resolve_field(row, "price", {"price": "Cost RUB"}) == "2"

    def test_mapping_is_unconditional(self):
        row = {"price": "1"}
        assert resolve_field(row, "price", {"price": "Cost RUB"}) is None

    def test_empty_mapping_entry_is_ignored(self):
        row = {"price": "1"}
        assert resolve_field(row, "price", {"price": ""}) == "1"

    def test_custom_aliases(self):
        row = {"cost": "9"}
        assert resolve_field(row, "price", aliases=["cost"]) == "9"

    def test_unknown_field(self):
        assert resolve_field({"a": 1}, "nothing") is None


class TestMatchedColumn:
    """Tests for matched_column."""

    def test_reports_alias_column(self):
        assert matched_column({"rooms": 2}, "bedrooms") == "rooms"

    def test_reports_mapped_column_only_if_present(self):
        assert matched_column({"Beds": 2}, "bedrooms", {"bedrooms": "Beds"}) == "Beds"
        assert matched_column({"rooms": 2}, "bedrooms", {"bedrooms": "Beds"}) is None
