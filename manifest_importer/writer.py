from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from manifest_importer.importer import ImportResult

OUTPUT_FORMATS = ("json", "csv", "xlsx")

ERROR_HEADERS   = ["sheetId", "rowIndex", "columnId", "message"]
MAPPING_HEADERS = ["csvColumnName", "sheetId", "sheetColumnId"]


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def result_headers(rows: list[dict[str, Any]]) -> list[str]:
    headers: dict[str, None] = {}
    for row in rows:
        for key in row:
            headers.setdefault(key, None)
    return list(headers)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def render_csv(rows: list[dict[str, Any]], headers: list[str] | None = None) -> str:
    headers = headers or result_headers(rows)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(h)) for h in headers])
    return buffer.getvalue()


def _style_sheet(ws, headers: list[str], rows: list[list[Any]], header_color: str) -> None:
    """Bold coloured header, frozen first row, widths from the first 300 rows."""
    fill = PatternFill("solid", fgColor=header_color)
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.freeze_panes = "A2"
    for i, header in enumerate(headers):
        width = len(str(header)) + 2
        for row in rows[:300]:
            width = max(width, len(str(row[i])) + 2)
        ws.column_dimensions[get_column_letter(i + 1)].width = max(10, min(60, width))


def build_workbook(result: ImportResult) -> openpyxl.Workbook:
    wb = openpyxl.Workbook()

    ws1 = wb.active
    ws1.title = "Result"
    headers = result_headers(result.result) or [c.label for c in result.sheet.columns]
    body = [[_cell(row.get(h)) for h in headers] for row in result.result]
    ws1.append(headers)
    for row in body:
        ws1.append(row)
    _style_sheet(ws1, headers, body, "4CAF50")

    ws2 = wb.create_sheet("Validation Errors")
    errors = [[_cell(e.to_dict()[h]) for h in ERROR_HEADERS] for e in result.validation_errors]
    ws2.append(ERROR_HEADERS)
    for row in errors:
        ws2.append(row)
    _style_sheet(ws2, ERROR_HEADERS, errors, "E53935")

    ws3 = wb.create_sheet("Column Mappings")
    mappings = [[m.to_dict()[h] for h in MAPPING_HEADERS] for m in result.column_mappings]
    ws3.append(MAPPING_HEADERS)
    for row in mappings:
        ws3.append(row)
    _style_sheet(ws3, MAPPING_HEADERS, mappings, "1565C0")
    return wb


def workbook_bytes(result: ImportResult) -> bytes:
    buffer = io.BytesIO()
    build_workbook(result).save(buffer)
    return buffer.getvalue()


def write_result(result: ImportResult, path: Path, fmt: str, state: dict[str, Any] | None = None) -> Path:
    """Write the import result as JSON host state, CSV rows, or an xlsx workbook."""
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"Unsupported output format '{fmt}'. Choose from: {', '.join(OUTPUT_FORMATS)}")
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "json":
        path.write_text(json_dumps(state if state is not None else result.to_state()), encoding="utf-8")
    elif fmt == "csv":
        path.write_text(render_csv(result.result), encoding="utf-8")
    else:
        build_workbook(result).save(path)
    return path
