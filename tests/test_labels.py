"""Tests for the flower label catalog."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from flowerscan.ml.labels import FLOWERS_102, UNKNOWN_LABEL, LabelCatalog, code_sort_key

if TYPE_CHECKING:
    from pathlib import Path


class TestDefaultCatalog:
    def test_has_all_categories(self) -> None:
        catalog = LabelCatalog()
        assert len(catalog) == 102
        assert catalog.codes() == [str(code) for code in range(1, 103)]

    def test_known_codes(self) -> None:
        catalog = LabelCatalog()
        assert catalog.lookup("74") == "rose"
        assert catalog.lookup("1") == "pink primrose"
        assert catalog.lookup("102") == "blackberry lily"

    def test_unknown_code_returns_sentinel(self) -> None:
        catalog = LabelCatalog()
        assert catalog.lookup("999") == UNKNOWN_LABEL == "Unknown"
        assert catalog.lookup("") == "Unknown"
        assert catalog.lookup("rose") == "Unknown"

    def test_lookup_is_repeatable(self) -> None:
        catalog = LabelCatalog()
        assert {catalog.lookup("49") for _ in range(5)} == {"oxeye daisy"}
        assert {catalog.lookup("0") for _ in range(5)} == {"Unknown"}

    def test_names_are_stored_unformatted(self) -> None:
        assert FLOWERS_102["12"] == "colt's foot"

    def test_contains(self) -> None:
        catalog = LabelCatalog()
        assert "42" in catalog
        assert "0" not in catalog


class TestCustomCatalog:
    def test_mapping_constructor(self) -> None:
        catalog = LabelCatalog({"0": "tulip", "1": "daisy"})
        assert catalog.lookup("0") == "tulip"
        assert catalog.lookup("74") == "Unknown"

    def test_caller_mapping_is_copied(self) -> None:
        labels = {"0": "tulip"}
        catalog = LabelCatalog(labels)
        labels["0"] = "changed"
        assert catalog.lookup("0") == "tulip"

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"10": "sunflower", "2": "tulip"}), encoding="utf-8")

        catalog = LabelCatalog.from_file(path)

        assert catalog.lookup("10") == "sunflower"
        assert catalog.codes() == ["2", "10"]

    def test_from_file_rejects_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps(["rose"]), encoding="utf-8")
        with pytest.raises(ValueError, match="JSON object"):
            LabelCatalog.from_file(path)

    def test_from_file_rejects_non_string_names(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"1": 5}), encoding="utf-8")
        with pytest.raises(ValueError, match="JSON object"):
            LabelCatalog.from_file(path)

    def test_from_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Cannot read"):
            LabelCatalog.from_file(tmp_path / "missing.json")


class TestCodeOrdering:
    def test_numeric_codes_sort_by_value(self) -> None:
        assert sorted(["10", "2", "1"], key=code_sort_key) == ["1", "2", "10"]

    def test_non_numeric_codes_sort_after_numeric(self) -> None:
        assert sorted(["b", "3", "a"], key=code_sort_key) == ["3", "a", "b"]
