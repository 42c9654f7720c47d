"""
Tests du modèle de données normalisé
"""

from reportmate_agent.core.records import (
    ListRecord, MapRecord, NormalizedRecord, Record, Scalar
)


class TestRecord:

    def test_from_python_builds_tagged_tree(self):
        record = Record.from_python({"name": "disk0", "partitions": [{"size": 10}], "encrypted": None})

        assert isinstance(record, MapRecord)
        assert isinstance(record.get("partitions"), ListRecord)
        assert isinstance(record.get("encrypted"), Scalar)
        assert record.keys() == ["name", "partitions", "encrypted"]

    def test_osquery_text_columns_are_converted(self):
        row = Record.from_python({"cores": "8", "size": "1.5", "enabled": "1", "port": 22})

        assert row.get_int("cores") == 8
        assert row.get_int("size") == 1
        assert row.get_float("size") == 1.5
        assert row.get_bool("enabled") is True
        assert row.get_str("port") == "22"

    def test_accessors_return_explicit_defaults(self):
        row = Record.from_python({"name": None, "nested": {"a": 1}, "flag": "maybe"})

        assert row.get_str("missing", "n/a") == "n/a"
        assert row.get_str("name", "unknown") == "unknown"
        assert row.get_int("nested", -1) == -1
        assert row.get_bool("flag", True) is True
        assert row.get_list("name").elements == []
        assert row.get_map("missing").keys() == []

    def test_booleans_are_not_integers(self):
        row = Record.from_python({"value": True})

        assert row.get_int("value", 7) == 7
        assert row.get_str("value", "x") == "x"


class TestNormalizedRecord:

    def test_single_record_rows(self):
        result = NormalizedRecord.single({"hostname": "mac"})

        assert not result.is_items
        assert [row.get_str("hostname") for row in result.rows()] == ["mac"]

    def test_items_rows_and_first(self):
        result = NormalizedRecord.from_items([{"name": "a"}, {"name": "b"}])

        assert result.is_items
        assert result.first().get_str("name") == "a"
        assert len(result.rows()) == 2

    def test_first_of_empty_items_is_empty_mapping(self):
        result = NormalizedRecord.from_items([])

        assert result.first().to_python() == {}
        assert result.first().get_str("anything", "default") == "default"

    def test_scalar_elements_are_wrapped(self):
        result = NormalizedRecord.from_items(["en0", "en1"])

        assert result.to_python() == {"items": [{"value": "en0"}, {"value": "en1"}]}
