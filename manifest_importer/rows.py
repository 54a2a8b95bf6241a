from __future__ import annotations

import math
from datetime import date
from typing import Any, Iterable, Mapping

import pandas as pd

from manifest_importer.schema import Sheet

# Keys always delivered to the host as text, whatever the file cell type was
TEXT_KEYS = {
    "postal_code",
    "notes",
    "sender_name",
    "recipient_name",
    "recipient_email",
    "recipient_contact_number",
    "recipient_company",
    "serving_date",
    "delivery_timeslot",
}


def _is_text_key(key: str) -> bool:
    return "address" in key or key in TEXT_KEYS


def _plain(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, date):
        return str(value)
    # numpy scalars
    if hasattr(value, "item") and not isinstance(value, (list, tuple, dict)):
        try:
            return _plain(value.item())
        except (TypeError, ValueError):
            pass
    return str(value)


def sanitize_row(item: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce one record into plain str / int / float / bool / None values."""
    result: dict[str, Any] = {}
    for key, value in item.items():
        key = str(key)
        plain = _plain(value)
        if _is_text_key(key) and not isinstance(plain, str):
            result[key] = "" if plain is None else str(plain)
        else:
            result[key] = plain
    return result


def records_from_dataframe(df: pd.DataFrame) -> list[dict[str, Any]]:
    frame = df.astype(object).where(pd.notna(df), None)
    frame.columns = [str(c) for c in frame.columns]
    return frame.to_dict(orient="records")


def has_item_quantity(row: Mapping[str, Any], item_columns: Iterable[str]) -> bool:
    """True when any item column holds a non-zero number (blank counts as zero)."""
    for column_id in item_columns:
        value = row.get(column_id)
        if isinstance(value, bool):
            continue
        if isinstance(value, str):
            text = value.strip()
            if not text:
                continue
            try:
                value = float(text)
            except ValueError:
                continue
        if isinstance(value, (int, float)) and not math.isnan(value) and value != 0:
            return True
    return False


def combine_rows(
    parsed_rows: list[dict[str, Any]],
    sheet_rows: list[dict[str, Any]],
    source_indices: list[int],
    sheet: Sheet,
    mapped_column_ids: Iterable[str],
) -> list[dict[str, Any]]:
    """
    Overlay transformed sheet values onto the original file rows.

    Each output row keeps every column from the file and gains the cleaned
    value of each mapped sheet column under that column's label.
    """
    mapped = [c for c in sheet.columns if c.id in set(mapped_column_ids)]
    combined = []
    for sheet_row, source_index in zip(sheet_rows, source_indices):
        row = dict(parsed_rows[source_index]) if source_index < len(parsed_rows) else {}
        for column in mapped:
            row[column.label] = sheet_row.get(column.id)
        combined.append(sanitize_row(row))
    return combined
