from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from typing import Any, Callable

from manifest_importer.schema import Column, EnumOption, Transformer, Validator

NON_DIGIT_RE = re.compile(r"\D")
NUMBER_RE    = re.compile(r"^[+-]?\d+(?:\.\d+)?$")

EXCEL_EPOCH = datetime(1899, 12, 30)

DEFAULT_MESSAGES = {
    "required":      "This field is required",
    "regex_matches": "Value does not match the expected format",
    "is_integer":    "Must be a whole number",
    "non_negative":  "Must not be negative",
}


def _fmt(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ══════════════════════════════════════════════════════════════════════════════
# TRANSFORMERS
# ══════════════════════════════════════════════════════════════════════════════

def strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def phone_number(value: Any) -> Any:
    """Keep digits only, then prefix the 65 country code to 8-digit numbers."""
    if value is None:
        return ""
    digits = NON_DIGIT_RE.sub("", str(value))
    if len(digits) == 8:
        return f"65{digits}"
    return digits


def postal_code(value: Any) -> str:
    if _is_blank(value):
        return ""
    return str(value).strip().rjust(6, "0")


def iso_date(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    v = value.strip()
    if not v or re.match(r"^\d{4}-\d{2}-\d{2}$", v):
        return v

    # 2024-03-01T00:00:00Z / 2024-03-01 00:00:00 (Excel cells read as text)
    m = re.match(r"^(\d{4}-\d{2}-\d{2})[T ]\d{2}:\d{2}", v)
    if m:
        return m.group(1)

    m = re.match(r"^(\d{4})/(\d{1,2})/(\d{1,2})$", v)
    if m:
        try:
            return _fmt(datetime(int(m.group(1)), int(m.group(2)), int(m.group(3))))
        except ValueError:
            return v

    # DD/MM/YYYY, or MM/DD/YYYY when the day-first reading is impossible
    m = re.match(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$", v)
    if m:
        a, b, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        for day, month in ((a, b), (b, a)):
            try:
                return _fmt(datetime(year, month, day))
            except ValueError:
                continue
        return v

    if re.match(r"^\d{5}$", v) and 40_000 <= int(v) <= 55_000:
        return _fmt(EXCEL_EPOCH + timedelta(days=int(v)))

    return v


def default_to_zero(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return 0
    if value is None:
        return 0
    return value


def to_number(value: Any) -> Any:
    if _is_number(value):
        return value
    if isinstance(value, str) and NUMBER_RE.match(value.strip()):
        text = value.strip()
        return float(text) if "." in text else int(text)
    return value


CUSTOM_TRANSFORMERS: dict[str, Callable[[Any], Any]] = {
    "phone_number":    phone_number,
    "postal_code":     postal_code,
    "iso_date":        iso_date,
    "default_to_zero": default_to_zero,
    "to_number":       to_number,
}


def apply_transformer(transformer: Transformer, value: Any) -> Any:
    if transformer.kind == "strip":
        return strip(value)
    if transformer.kind == "custom":
        try:
            fn = CUSTOM_TRANSFORMERS[transformer.key or ""]
        except KeyError:
            raise ValueError(f"Unknown custom transformer '{transformer.key}'") from None
        return fn(value)
    raise ValueError(f"Unknown transformer '{transformer.kind}'")


# ══════════════════════════════════════════════════════════════════════════════
# VALIDATORS
# ══════════════════════════════════════════════════════════════════════════════

def check(validator: Validator, value: Any) -> bool:
    kind = validator.kind
    if kind == "required":
        return not _is_blank(value)
    if kind == "regex_matches":
        text = "" if value is None else str(value)
        return re.fullmatch(validator.regex or "", text) is not None
    if kind == "is_integer":
        if isinstance(value, float):
            return value.is_integer()
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "non_negative":
        return not _is_number(value) or value >= 0
    raise ValueError(f"Unknown validator '{kind}'")


def message_for(validator: Validator) -> str:
    return validator.error or DEFAULT_MESSAGES.get(validator.kind, "Invalid value")


def resolve_enum(options: list[EnumOption], value: Any) -> str | None:
    """Return the option value matching ``value`` by label or value, ignoring case."""
    needle = str(value).strip().lower()
    for option in options:
        if needle in (option.value.lower(), option.label.lower()):
            return option.value
    return None


def process_cell(column: Column, value: Any) -> tuple[Any, str | None]:
    """
    Run a column's transformers, then its validators, over one cell.

    Returns (new_value, error). Only the first failing rule is reported.
    """
    for transformer in column.transformers:
        value = apply_transformer(transformer, value)

    if column.type == "enum" and not _is_blank(value):
        resolved = resolve_enum(column.options, value)
        if resolved is None:
            allowed = ", ".join(o.value for o in column.options)
            return value, f"Must be one of: {allowed}"
        value = resolved

    if column.type == "number" and isinstance(value, str) and not _is_blank(value):
        number_rules = [v for v in column.validators if v.kind in ("is_integer", "non_negative")]
        return value, message_for(number_rules[0]) if number_rules else "Must be a number"

    for validator in column.validators:
        if not check(validator, value):
            return value, message_for(validator)
    return value, None
