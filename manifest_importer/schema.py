"""
schema.py — Sheet definitions for the manifest importer

A sheet is an ordered list of columns. Each column carries the label shown to
the user, the keywords used to suggest a mapping, its value type, and the
transformers / validators applied to every cell mapped onto it.

Public API:
    sheet = manifest_sheet(build_item_columns(line_items))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

SHEET_ID    = "logistics_manifest"
SHEET_LABEL = "Logistics Manifest"

COLUMN_TYPES = ("string", "number", "enum")

EMAIL_RE = (
    r'^$|^(([^<>()\[\]\\.,;:\s@"]+(\.[^<>()\[\]\\.,;:\s@"]+)*)|(".+"))'
    r"@((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))$"
)
# 10 digits: "65" country code followed by an 8-digit local number
PHONE_RE  = r"^65\d{8}$"
DATE_RE   = r"^\d{4}-\d{2}-\d{2}$"
POSTAL_RE = r"^\d{6}$"

ITEM_LABEL_LENGTH = 30


@dataclass(frozen=True)
class Validator:
    kind: str
    regex: str | None = None
    error: str | None = None
    key: str | None = None


@dataclass(frozen=True)
class Transformer:
    kind: str
    key: str | None = None


@dataclass(frozen=True)
class EnumOption:
    label: str
    value: str


@dataclass
class Column:
    id: str
    label: str
    type: str = "string"
    suggested_mapping_keywords: list[str] = field(default_factory=list)
    validators: list[Validator] = field(default_factory=list)
    transformers: list[Transformer] = field(default_factory=list)
    options: list[EnumOption] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"Unknown column type '{self.type}' for column '{self.id}'")

    @property
    def is_required(self) -> bool:
        return any(v.kind == "required" for v in self.validators)


@dataclass
class Sheet:
    id: str
    label: str
    columns: list[Column]

    def column(self, column_id: str) -> Column:
        for column in self.columns:
            if column.id == column_id:
                return column
        raise KeyError(column_id)

    @property
    def column_ids(self) -> list[str]:
        return [column.id for column in self.columns]


def truncate(text: Any, length: int, ellipsis: str = "...") -> str:
    """Cut ``text`` to ``length`` characters, ellipsis included."""
    if not text or not isinstance(text, str):
        return ""
    if len(text) > length:
        return text[: length - len(ellipsis)] + ellipsis
    return text


def build_item_columns(
    line_items: Iterable[Any] | None,
    *,
    id_field: str = "item_id",
    label_length: int | None = ITEM_LABEL_LENGTH,
) -> list[Column]:
    """
    Build one quantity column per line item.

    Entries that are not mappings, lack ``id_field``, or whose ``name`` is not
    a string are skipped. Blank quantities default to zero.
    """
    columns: list[Column] = []
    for item in line_items or []:
        if not isinstance(item, Mapping):
            continue
        if id_field not in item or not isinstance(item.get("name"), str):
            continue
        raw_id  = item[id_field]
        safe_id = "" if raw_id is None else str(raw_id)
        label   = f"[#{safe_id}] {item['name']}"
        if label_length is not None:
            label = truncate(label, label_length)
        columns.append(Column(
            id=safe_id,
            label=label,
            type="number",
            suggested_mapping_keywords=[label],
            transformers=[
                Transformer("strip"),
                Transformer("custom", "default_to_zero"),
                Transformer("custom", "to_number"),
            ],
            validators=[
                Validator("is_integer", error="Please enter a valid number"),
                Validator("non_negative", error="Quantity cannot be negative", key=f"quantity_{safe_id}"),
            ],
        ))
    return columns


def _fixed_columns() -> list[Column]:
    required = Validator("required")
    strip    = Transformer("strip")
    return [
        Column(
            id="fulfilment_type",
            label="Fulfilment type",
            type="enum",
            suggested_mapping_keywords=["fulfilment type"],
            options=[EnumOption("Delivery", "delivery"), EnumOption("Pickup", "pickup")],
            validators=[required],
        ),
        Column(
            id="sender_name",
            label="Sender name",
            suggested_mapping_keywords=["sender"],
            transformers=[strip],
            validators=[required],
        ),
        Column(
            id="recipient_company",
            label="Recipient company",
            suggested_mapping_keywords=["company"],
            transformers=[strip],
        ),
        Column(
            id="recipient_name",
            label="Recipient name",
            suggested_mapping_keywords=["recipient", "name"],
            transformers=[strip],
            validators=[required],
        ),
        Column(
            id="recipient_email",
            label="Recipient email",
            suggested_mapping_keywords=["recipient", "email"],
            transformers=[strip],
            validators=[Validator("regex_matches", regex=EMAIL_RE, error="This email is not valid")],
        ),
        Column(
            id="recipient_contact_number",
            label="Recipient contact number",
            suggested_mapping_keywords=["recipient contact number"],
            transformers=[Transformer("custom", "phone_number")],
            validators=[
                required,
                Validator("regex_matches", regex=PHONE_RE, error="This contact number is not valid"),
            ],
        ),
        Column(
            id="serving_date",
            label="Delivery date",
            suggested_mapping_keywords=["delivery date"],
            transformers=[Transformer("custom", "iso_date")],
            validators=[
                required,
                Validator("regex_matches", regex=DATE_RE, error="Please use the format YYYY-MM-DD"),
            ],
        ),
        Column(
            id="delivery_timeslot",
            label="Delivery timeslot",
            type="enum",
            suggested_mapping_keywords=["timeslot"],
            options=[EnumOption("Morning", "morning"), EnumOption("Afternoon", "afternoon")],
            validators=[required],
        ),
        Column(
            id="address_line1",
            label="Delivery address line1",
            suggested_mapping_keywords=["delivery address line1"],
            transformers=[strip],
            validators=[required],
        ),
        Column(
            id="address_line2",
            label="Delivery address line2",
            suggested_mapping_keywords=["delivery address line2"],
        ),
        Column(
            id="postal_code",
            label="Delivery postal code",
            suggested_mapping_keywords=["delivery postal code"],
            transformers=[Transformer("custom", "postal_code"), strip],
            validators=[
                required,
                Validator("regex_matches", regex=POSTAL_RE, error="This postal code is not valid"),
            ],
        ),
        Column(
            id="notes",
            label="Notes",
            suggested_mapping_keywords=["notes"],
        ),
    ]


def manifest_sheet(
    item_columns: Iterable[Column] = (),
    warnings: list[str] | None = None,
) -> Sheet:
    """
    Fixed manifest columns followed by the item columns.

    An item column whose id is already taken is skipped; the reason is
    appended to ``warnings`` when a list is given.
    """
    columns = _fixed_columns()
    seen = set(c.id for c in columns)
    for column in item_columns:
        if column.id in seen:
            if warnings is not None:
                warnings.append(f"Skipped line item '{column.label}': column id '{column.id}' is already in use")
            continue
        seen.add(column.id)
        columns.append(column)
    return Sheet(id=SHEET_ID, label=SHEET_LABEL, columns=columns)


def item_column_ids(sheet: Sheet) -> list[str]:
    return [c.id for c in sheet.columns if c.type == "number"]


def sheet_to_dict(sheet: Sheet) -> dict[str, Any]:
    return {
        "id": sheet.id,
        "label": sheet.label,
        "columns": [
            {
                "id": c.id,
                "label": c.label,
                "type": c.type,
                "required": c.is_required,
                "suggested_mapping_keywords": list(c.suggested_mapping_keywords),
                "options": [o.value for o in c.options],
                "transformers": [t.key or t.kind for t in c.transformers],
                "validators": [v.kind for v in c.validators],
            }
            for c in sheet.columns
        ],
    }
