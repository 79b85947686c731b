"""Tests for the canonical record schema and validation."""

import copy

import pytest

from stardex.errors import ValidationError
from stardex.models import SOURCES, StarRecord, ensure_valid, validate


def make_row(**overrides):
    row = {
        "id": 1,
        "owner": "acme",
        "name": "widget",
        "full_name": "acme/widget",
        "source": "github",
        "synced_at": "2026-01-01T00:00:00Z",
        "stars": 10,
        "forks": 2,
        "issues": 0,
        "archived": False,
        "fork": False,
        "url": "https://github.com/acme/widget",
        "topics": ["cli"],
    }
    row.update(overrides)
    return row


class TestValidate:
    def test_valid_record(self):
        result = validate(make_row())
        assert result.valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_accepts_star_record(self):
        record = StarRecord(
            id=1, owner="acme", name="widget", full_name="acme/widget",
            source="chrome", synced_at="2026-01-01T00:00:00Z",
        )
        assert validate(record).valid is True

    @pytest.mark.parametrize("field", ["id", "owner", "name", "full_name", "source"])
    def test_missing_required_field_is_error(self, field):
        row = make_row()
        del row[field]
        result = validate(row)
        assert result.valid is False
        assert any(field in e for e in result.errors)

    def test_id_must_be_integer(self):
        assert validate(make_row(id="42")).valid is False
        assert validate(make_row(id=True)).valid is False

    def test_identity_fields_must_be_strings(self):
        result = validate(make_row(owner=5, name=["x"]))
        assert result.valid is False
        assert len(result.errors) == 2

    def test_unknown_source_is_error(self):
        result = validate(make_row(source="safari"))
        assert result.valid is False
        assert "source" in result.errors[0]

    def test_every_enumerated_source_is_valid(self):
        for source in SOURCES:
            assert validate(make_row(source=source)).valid is True

    def test_soft_mismatches_are_warnings(self):
        result = validate(make_row(stars="12", archived="yes", url="ftp://example.com"))
        assert result.valid is True
        assert len(result.warnings) == 3

    def test_does_not_mutate_input(self):
        row = make_row(stars="12", source="nope")
        before = copy.deepcopy(row)
        validate(row)
        assert row == before

    def test_ensure_valid_raises(self):
        with pytest.raises(ValidationError) as exc:
            ensure_valid(make_row(source="nope"))
        assert exc.value.errors


class TestStarRecord:
    def test_topics_equality_ignores_order(self):
        a = StarRecord(
            id=1, owner="a", name="b", full_name="a/b", source="github",
            synced_at="2026-01-01T00:00:00Z", topics=["x", "y"],
        )
        b = StarRecord(
            id=1, owner="a", name="b", full_name="a/b", source="github",
            synced_at="2026-01-01T00:00:00Z", topics=["y", "x"],
        )
        assert a == b

    def test_key_is_case_insensitive(self):
        record = StarRecord(
            id=1, owner="Acme", name="Widget", full_name="Acme/Widget",
            source="github", synced_at="2026-01-01T00:00:00Z",
        )
        assert record.key == "acme/widget"

    def test_populated_count(self):
        record = StarRecord(
            id=1, owner="a", name="b", full_name="a/b", source="github",
            synced_at="2026-01-01T00:00:00Z", description="d", stars=3,
        )
        assert record.populated_count() == 2

    def test_row_round_trip(self):
        record = StarRecord(
            id=7, owner="a", name="b", full_name="a/b", source="manual",
            synced_at="2026-01-01T00:00:00Z", topics=["t"], archived=True,
        )
        row = record.to_row()
        assert row["topics"] == '["t"]'
        assert row["archived"] == 1
        assert StarRecord.from_row(row) == record
