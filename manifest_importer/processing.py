from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from manifest_importer.mapping import ColumnMapping
from manifest_importer.rows import has_item_quantity
from manifest_importer.rules import process_cell
from manifest_importer.schema import Sheet


@dataclass
class ValidationError:
    sheet_id: str
    row_index: int
    column_id: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheetId": self.sheet_id,
            "rowIndex": self.row_index,
            "columnId": self.column_id,
            "message": self.message,
        }


@dataclass
class SheetState:
    sheet_id: str
    rows: list[dict[str, Any]] = field(default_factory=list)
    # position of each row in the uploaded file, after any row filtering
    source_indices: list[int] = field(default_factory=list)


def map_rows(
    records: Iterable[Mapping[str, Any]],
    mappings: Iterable[ColumnMapping],
    sheet: Sheet,
) -> list[dict[str, Any]]:
    """Re-key file records by sheet column id; unmapped columns are blank."""
    by_column = {m.sheet_column_id: m.csv_column_name for m in mappings if m.sheet_id == sheet.id}
    mapped = []
    for record in records:
        row = {}
        for column in sheet.columns:
            header = by_column.get(column.id)
            value = record.get(header) if header is not None else None
            row[column.id] = "" if value is None else value
        mapped.append(row)
    return mapped


def drop_rows_without_items(
    rows: list[dict[str, Any]],
    item_columns: list[str],
) -> tuple[list[dict[str, Any]], list[int]]:
    """Keep rows ordering at least one non-zero item quantity; return kept rows and their indices."""
    kept, indices = [], []
    for index, row in enumerate(rows):
        if has_item_quantity(row, item_columns):
            kept.append(row)
            indices.append(index)
    return kept, indices


def process_sheet(
    rows: list[dict[str, Any]],
    sheet: Sheet,
    source_indices: list[int] | None = None,
) -> tuple[SheetState, list[ValidationError]]:
    """Transform and validate every cell of ``rows``; row_index refers to ``rows``."""
    state = SheetState(
        sheet_id=sheet.id,
        source_indices=list(source_indices) if source_indices is not None else list(range(len(rows))),
    )
    errors: list[ValidationError] = []
    for row_index, row in enumerate(rows):
        out = {}
        for column in sheet.columns:
            value, error = process_cell(column, row.get(column.id, ""))
            out[column.id] = value
            if error:
                errors.append(ValidationError(sheet.id, row_index, column.id, error))
        state.rows.append(out)
    return state, errors
