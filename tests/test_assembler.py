"""
Tests des fonctions de mise en forme des résultats
"""

import pytest

from reportmate_agent.collectors.assembler import (
    determine_form_factor, format_bytes, lookup, model_year, normalize_architecture,
    parse_firmware_version, percentage, rename_fields, strip_vendor_suffix, to_bool
)


class TestPercentage:

    @pytest.mark.parametrize("part,total,expected", [
        (250, 500, 50.0),
        (600, 500, 100.0),
        (0, 500, 0.0),
        (100, 0, 0.0),
        (100, -5, 0.0),
        (-10, 500, 0.0),
        ("125", "500", 25.0),
        ("abc", 500, 0.0),
        (None, 500, 0.0),
        (float("nan"), 500, 0.0),
    ])
    def test_percentage_is_clamped(self, part, total, expected):
        assert percentage(part, total) == expected


class TestLookups:

    def test_lookup_returns_key_when_missing(self):
        assert lookup({"a": 1}, "a") == 1
        assert lookup({"a": 1}, "z") == "z"
        assert lookup({"a": 1}, "z", None) is None

    def test_rename_fields_keeps_order(self):
        renamed = rename_fields({"version": "23.1", "arguments": "-v"}, {"arguments": "bootArguments"})

        assert list(renamed.items()) == [("version", "23.1"), ("bootArguments", "-v")]

    @pytest.mark.parametrize("raw,expected", [
        ("x86_64", "x64"),
        ("arm64", "ARM64"),
        ("ARM64E", "ARM64"),
        ("ppc", "ppc"),
        ("", ""),
    ])
    def test_normalize_architecture(self, raw, expected):
        assert normalize_architecture(raw) == expected

    def test_model_year(self):
        assert model_year("Mac14,2") == "2022"
        assert model_year("Unknown1,1") == ""


class TestFormFactor:

    @pytest.mark.parametrize("model_id,model_name,expected", [
        ("MacBookPro18,3", "", "laptop"),
        ("Macmini9,1", "", "desktop"),
        ("Mac14,3", "", "desktop"),
        ("Mac15,12", "", "laptop"),
        ("Mac99,9", "Mac Studio", "desktop"),
        ("Mac99,9", "MacBook Air", "laptop"),
        ("VMware7,1", "", "unknown"),
    ])
    def test_determine_form_factor(self, model_id, model_name, expected):
        assert determine_form_factor(model_id, model_name) == expected


class TestValueFormatting:

    def test_format_bytes(self):
        assert format_bytes(1536) == "1.5 KB"
        assert format_bytes(17179869184) == "16.0 GB"
        assert format_bytes("invalid") == "N/A"
        assert format_bytes(None) == "N/A"

    def test_parse_firmware_version(self):
        assert parse_firmware_version("Version 17.0 (Build 21A329)") == "17.0.21A329"
        assert parse_firmware_version("unknown") == "unknown"

    def test_strip_vendor_suffix(self):
        assert strip_vendor_suffix("Apple Inc.") == "Apple"
        assert strip_vendor_suffix("Dell") == "Dell"

    def test_to_bool(self):
        assert to_bool("true") is True
        assert to_bool("0") is False
        assert to_bool("perhaps", default=True) is True
