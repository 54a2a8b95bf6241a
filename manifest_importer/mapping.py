from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from manifest_importer.schema import Column, Sheet


@dataclass(frozen=True)
class ColumnMapping:
    csv_column_name: str
    sheet_id: str
    sheet_column_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "csvColumnName": self.csv_column_name,
            "sheetId": self.sheet_id,
            "sheetColumnId": self.sheet_column_id,
        }


def normalise_header(value: Any) -> str:
    text = "" if value is None else str(value)
    text = text.replace("\ufeff", "").replace("_", " ")
    return " ".join(text.strip().lower().split())


def _exact_names(column: Column) -> set[str]:
    names = {normalise_header(column.label), normalise_header(column.id)}
    names.update(normalise_header(k) for k in column.suggested_mapping_keywords)
    names.discard("")
    return names


def suggest_mappings(headers: Iterable[Any], sheet: Sheet) -> list[ColumnMapping]:
    """
    Suggest a file-column to sheet-column mapping.

    First pass: a header equal to a column's label, id, or keyword.
    Second pass: a header containing one of a free column's keywords, longest
    keyword first. Each header and each column is used at most once.
    """
    header_list = [str(h) for h in headers]
    chosen: dict[str, str] = {}
    taken: set[str] = set()

    for header in header_list:
        norm = normalise_header(header)
        for column in sheet.columns:
            if column.id in taken:
                continue
            if norm in _exact_names(column):
                chosen[header] = column.id
                taken.add(column.id)
                break

    candidates: list[tuple[int, int, str, str]] = []
    for h_idx, header in enumerate(header_list):
        if header in chosen:
            continue
        norm = normalise_header(header)
        for column in sheet.columns:
            if column.id in taken:
                continue
            for keyword in column.suggested_mapping_keywords:
                kw = normalise_header(keyword)
                if kw and kw in norm:
                    candidates.append((-len(kw), h_idx, header, column.id))

    for _, _, header, column_id in sorted(candidates):
        if header in chosen or column_id in taken:
            continue
        chosen[header] = column_id
        taken.add(column_id)

    return [
        ColumnMapping(header, sheet.id, chosen[header])
        for header in header_list
        if header in chosen
    ]


def apply_overrides(
    mappings: list[ColumnMapping],
    overrides: Mapping[str, str | None],
    headers: Iterable[Any],
    sheet: Sheet,
) -> list[ColumnMapping]:
    """
    Apply user edits (``header -> column id``) on top of suggested mappings.

    An empty column id unmaps the header. A column assigned by an override is
    released from any other header it was suggested for.
    """
    header_list = [str(h) for h in headers]
    known = set(sheet.column_ids)
    by_header = {m.csv_column_name: m.sheet_column_id for m in mappings}

    for header, column_id in overrides.items():
        if header not in header_list:
            raise ValueError(f"Unknown file column '{header}'. Available: {header_list}")
        if not column_id:
            by_header.pop(header, None)
            continue
        if column_id not in known:
            raise ValueError(f"Unknown sheet column '{column_id}'. Available: {sorted(known)}")
        for other, assigned in list(by_header.items()):
            if assigned == column_id and other != header:
                del by_header[other]
        by_header[header] = column_id

    return [
        ColumnMapping(header, sheet.id, by_header[header])
        for header in header_list
        if header in by_header
    ]


def missing_required_columns(mappings: Iterable[ColumnMapping], sheet: Sheet) -> list[str]:
    mapped = {m.sheet_column_id for m in mappings}
    return [c.id for c in sheet.columns if c.is_required and c.id not in mapped]
