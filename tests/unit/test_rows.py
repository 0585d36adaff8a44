from __future__ import annotations

import pytest

from sheets_etl.etl.rows import RowsOfColumns
from sheets_etl.shared.exceptions.domain import ColumnIndexOutOfBoundsError, ColumnNotFoundError


class TestResolveColumns:
    def test_names_are_looked_up_in_header_row(self):
        sheet = RowsOfColumns([["Name", "Age"], ["Ana", "30"]])
        assert sheet.resolve_columns(["Age", "Name"]) == [1, 0]

    def test_lookup_is_exact(self):
        sheet = RowsOfColumns([["Name", "Age"]])
        with pytest.raises(ColumnNotFoundError):
            sheet.resolve_columns(["name"])

    def test_missing_column_raises_with_context(self):
        sheet = RowsOfColumns([["Name", "Age"]])
        with pytest.raises(ColumnNotFoundError) as exc_info:
            sheet.resolve_columns(["Email"])
        assert exc_info.value.error_code == "COLUMN_NOT_FOUND"
        assert exc_info.value.details["header"] == ["Name", "Age"]

    def test_header_row_can_be_other_than_first(self):
        sheet = RowsOfColumns([["Reporte 2019"], ["Name", "Age"], ["Ana", "30"]])
        assert sheet.resolve_columns(["Age"], header_row=1) == [1]

    def test_integer_specifiers_are_used_as_is(self):
        sheet = RowsOfColumns([["Name", "Age"]])
        assert sheet.resolve_columns([1, "Name", 0]) == [1, 0, 0]

    def test_integer_beyond_header_width_raises(self):
        sheet = RowsOfColumns([["Name", "Age"]])
        with pytest.raises(ColumnIndexOutOfBoundsError):
            sheet.resolve_columns([2])

    def test_header_is_trimmed(self):
        sheet = RowsOfColumns([["  Name ", "Age\n"]])
        assert sheet.resolve_columns(["Name", "Age"]) == [0, 1]


class TestSelectRows:
    def test_short_rows_yield_none(self):
        sheet = RowsOfColumns([["A", "B", "C"], ["1"], ["1", "2", "3"], []])
        assert sheet.select_rows([0, 2], skip_rows=1) == [["1", None], ["1", "3"], [None, None]]

    def test_output_is_rectangular_for_ragged_grids(self):
        grid = [["h1", "h2", "h3"], ["a"], ["a", "b", "c", "d", "e"], [], ["x", "y"]]
        sheet = RowsOfColumns(grid)
        for skip in range(0, 7):
            rows = sheet.select_rows([2, 0, 4], skip_rows=skip)
            assert len(rows) == max(len(grid) - skip, 0)
            assert all(len(row) == 3 for row in rows)

    def test_values_are_trimmed_and_none_becomes_empty(self):
        sheet = RowsOfColumns([["h"], ["  Ana  "], [None]])
        assert sheet.select_rows([0]) == [["Ana"], [""]]

    def test_no_skip_includes_header(self):
        sheet = RowsOfColumns([["Name"], ["Ana"]])
        assert sheet.select_rows([0], skip_rows=0) == [["Name"], ["Ana"]]

    def test_negative_skip_is_clamped(self):
        sheet = RowsOfColumns([["Name"], ["Ana"]])
        assert sheet.select_rows([0], skip_rows=-3) == [["Name"], ["Ana"]]
