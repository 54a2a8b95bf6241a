"""
loader.py — File loader for manifest uploads

Supports: .csv .tsv .txt .xlsx .xlsm .xls .json .jsonl

Public API:
    result = load_file("path/to/manifest.csv")
    df     = result["dataframe"]

Result dict keys:
    dataframe         — pandas DataFrame, every cell read as text
    detected_format   — "csv", "xlsx", "json", etc.
    detected_encoding — encoding name for text files; None for workbooks
    delimiter         — delimiter char for delimited text; None otherwise
    sheet_name        — sheet that was read for workbooks; None otherwise
    sheet_names       — all sheet names for workbooks; None otherwise
    warnings          — list of warning strings
"""

from __future__ import annotations

import csv
import io
import json as _json
from collections import Counter
from pathlib import Path
from typing import Optional

import chardet
import pandas as pd

TEXT_FORMATS  = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm", ".xls"}
JSON_FORMATS  = {".json"}
JSONL_FORMATS = {".jsonl"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS | JSON_FORMATS | JSONL_FORMATS


# ══════════════════════════════════════════════════════════════════════════════
# TEXT DECODING
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    detected = chardet.detect(raw).get("encoding") or "utf-8"
    if detected.lower() == "ascii":
        return "utf-8"
    return detected


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line: UTF-8, then the detected encoding, then
    latin-1, then CP1252 with replacement. Strips BOMs and null bytes.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines).lstrip("\ufeff")


def _detect_delimiter(text: str) -> str:
    """csv.Sniffer first; otherwise the candidate with the most consistent width."""
    sample_lines = [l for l in text.splitlines() if l.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in (",", ";", "\t", "|"):
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        if mode_width == 1:
            continue
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _result(df: pd.DataFrame, fmt: str, **extra) -> dict:
    payload = {
        "dataframe":         df,
        "detected_format":   fmt,
        "detected_encoding": None,
        "delimiter":         None,
        "sheet_name":        None,
        "sheet_names":       None,
        "warnings":          [],
    }
    payload.update(extra)
    return payload


def _cell_text(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_text(df: pd.DataFrame) -> pd.DataFrame:
    """Stringify every non-null cell so JSON uploads match the csv / Excel paths."""
    frame = df.astype(object).where(df.notna(), None)
    return frame.apply(lambda col: col.map(lambda v: None if v is None else _cell_text(v)))


def _load_text(path: Path, suffix: str) -> dict:
    raw  = path.read_bytes()
    enc  = _detect_encoding(raw)
    text = _read_text_safely(raw, enc)
    if not text.strip():
        raise ValueError(f"{path.name} is empty")

    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)
    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            on_bad_lines="skip",
            sep=sep,
            engine="python",
            skip_blank_lines=True,
        )
    except Exception as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc

    if len(df.columns) < 2 and suffix == ".txt":
        raise ValueError(".txt file does not appear to contain delimited/tabular data")

    return _result(
        df,
        suffix.lstrip("."),
        detected_encoding=enc,
        delimiter=delimiter,
    )


def _load_excel(path: Path, suffix: str, sheet_name: Optional[str] = None) -> dict:
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd — run: pip install xlrd") from None

    try:
        with pd.ExcelFile(path) as xf:
            all_sheets = list(xf.sheet_names)
    except Exception as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc

    warnings: list[str] = []
    if sheet_name is not None:
        if sheet_name not in all_sheets:
            raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
        chosen = sheet_name
    else:
        chosen = all_sheets[0]
        if len(all_sheets) > 1:
            warnings.append(
                f"Multiple sheets found ({len(all_sheets)} total); "
                f"used '{chosen}'. Ignored: {all_sheets[1:]}"
            )

    try:
        df = pd.read_excel(path, sheet_name=chosen, dtype=str, keep_default_na=False)
    except Exception as exc:
        raise ValueError(f"Could not load sheet '{chosen}': {exc}") from exc

    return _result(
        df,
        suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=all_sheets,
        warnings=warnings,
    )


def _load_json(path: Path) -> dict:
    """
    Load a .json file holding an array of objects, or an object whose first
    list-valued key holds the rows.
    """
    raw  = path.read_bytes()
    enc  = _detect_encoding(raw)
    text = raw.decode(enc, errors="replace")

    try:
        data = _json.loads(text)
    except _json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc

    warnings: list[str] = []
    if isinstance(data, list):
        records = data
    elif isinstance(data, dict):
        list_keys = [k for k, v in data.items() if isinstance(v, list)]
        if list_keys:
            records = data[list_keys[0]]
            warnings.append(f"Nested JSON: used array at top-level key '{list_keys[0]}'")
        else:
            records = [data]
            warnings.append("JSON is a single object; treated as a one-row table")
    else:
        raise ValueError(f"JSON root must be an array or object, got {type(data).__name__}")

    try:
        df = _as_text(pd.json_normalize(records))
    except Exception as exc:
        raise ValueError(f"Could not flatten JSON records: {exc}") from exc
    return _result(df, "json", detected_encoding=enc, warnings=warnings)


def _load_jsonl(path: Path) -> dict:
    raw  = path.read_bytes()
    enc  = _detect_encoding(raw)
    text = raw.decode(enc, errors="replace")

    records: list[dict] = []
    parse_errors: list[str] = []
    for line_num, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            records.append(_json.loads(line))
        except _json.JSONDecodeError as exc:
            parse_errors.append(f"line {line_num}: {exc}")

    warnings: list[str] = []
    if parse_errors:
        sample = "; ".join(parse_errors[:3])
        extra  = f" (+{len(parse_errors) - 3} more)" if len(parse_errors) > 3 else ""
        warnings.append(f"{len(parse_errors)} lines could not be parsed — {sample}{extra}")

    df = _as_text(pd.json_normalize(records)) if records else pd.DataFrame()
    return _result(df, "jsonl", detected_encoding=enc, warnings=warnings)


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_file(path: "str | Path", sheet_name: Optional[str] = None) -> dict:
    """
    Load any supported file into a pandas DataFrame.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
        ImportError        if a required optional dependency is missing.
    """
    path   = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        return _load_text(path, suffix)
    if suffix in EXCEL_FORMATS:
        return _load_excel(path, suffix, sheet_name)
    if suffix in JSON_FORMATS:
        return _load_json(path)
    return _load_jsonl(path)
