from __future__ import annotations

import re

from sheets_etl.etl.identifiers import (
    MAX_IDENTIFIER_LENGTH,
    normalize_column_names,
    normalize_identifier,
)
from sheets_etl.infrastructure.database.base import LINEAGE_COLUMNS

SAFE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


class TestNormalizeIdentifier:
    def test_lowercases_and_replaces_whitespace(self):
        assert normalize_identifier("  First   Name ") == "first_name"

    def test_transliterates_accents(self):
        assert normalize_identifier("Ñandú Ávila") == "nandu_avila"

    def test_drops_unsafe_characters(self):
        assert normalize_identifier("E-mail (work)") == "email_work"

    def test_prefixes_leading_digit(self):
        assert normalize_identifier("2019 Total") == "_2019_total"

    def test_empty_when_nothing_usable(self):
        assert normalize_identifier("日本語") == ""
        assert normalize_identifier("   ") == ""

    def test_truncates_long_labels(self):
        assert len(normalize_identifier("a" * 200)) == MAX_IDENTIFIER_LENGTH


class TestNormalizeColumnNames:
    def test_duplicates_are_renamed_by_position(self):
        assert normalize_column_names(["Name", "name", "NAME"]) == ["name", "col_2", "col_3"]

    def test_empty_labels_get_positional_names(self):
        assert normalize_column_names(["", "Age", "???"]) == ["col_1", "age", "col_3"]

    def test_reserved_pattern_is_never_kept_from_input(self):
        """
        Verifica que una etiqueta con forma col_<n> no choque con los nombres
        generados para otras posiciones.
        """
        assert normalize_column_names(["", "col_1"]) == ["col_1", "col_2"]

    def test_lineage_columns_are_reserved(self):
        result = normalize_column_names(["_rowid", "_origin_job_id", "ok"], reserved=LINEAGE_COLUMNS)
        assert result == ["col_1", "col_2", "ok"]

    def test_output_is_unique_and_safe_for_hostile_input(self):
        labels = ["", "", "Name", "name", "näme", "col_3", "1", "_", "日本", "a b", "a_b", "x" * 80, "x" * 90]
        result = normalize_column_names(labels, reserved=LINEAGE_COLUMNS)
        assert len(result) == len(labels)
        assert len(set(result)) == len(result)
        for column in result:
            assert SAFE_IDENTIFIER.match(column), column
            assert len(column) <= MAX_IDENTIFIER_LENGTH
