"""
importer.py — One import event, from uploaded rows to host state

    importer = Importer(config, line_items=items)
    importer.on_upload_successful(lambda result: ...)
    result = importer.import_file("manifest.xlsx")
    state  = result.to_state(items)

Profiles:
    delivery   quantity columns keyed by ``item_id`` with labels cut to 30
               chars; result rows are the uploaded rows with cleaned values
               under each column label, geocoded when an API key is set.
    logistics  quantity columns keyed by ``id`` with full labels; rows with
               no item quantity are dropped before validation; result rows
               are the cleaned sheet rows keyed by column id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from manifest_importer.config import ImporterConfig
from manifest_importer.geocoding import GeocoderClient, enrich_rows, geocode_rows
from manifest_importer.loader import load_file
from manifest_importer.mapping import (
    ColumnMapping,
    apply_overrides,
    missing_required_columns,
    suggest_mappings,
)
from manifest_importer.processing import (
    ValidationError,
    drop_rows_without_items,
    map_rows,
    process_sheet,
)
from manifest_importer.rows import combine_rows, records_from_dataframe, sanitize_row
from manifest_importer.schema import (
    ITEM_LABEL_LENGTH,
    Sheet,
    build_item_columns,
    item_column_ids,
    manifest_sheet,
)

MODE_FILE   = "file"
MODE_MANUAL = "manual"


@dataclass(frozen=True)
class Profile:
    name: str
    item_id_field: str
    label_length: Optional[int]
    drop_rows_without_items: bool
    key_by_label: bool
    geocode: bool


PROFILES = {
    "delivery": Profile(
        name="delivery",
        item_id_field="item_id",
        label_length=ITEM_LABEL_LENGTH,
        drop_rows_without_items=False,
        key_by_label=True,
        geocode=True,
    ),
    "logistics": Profile(
        name="logistics",
        item_id_field="id",
        label_length=None,
        drop_rows_without_items=True,
        key_by_label=False,
        geocode=False,
    ),
}


@dataclass
class ImportResult:
    accepted: bool
    mode: str
    sheet: Sheet
    result: list[dict[str, Any]] = field(default_factory=list)
    validation_errors: list[ValidationError] = field(default_factory=list)
    column_mappings: list[ColumnMapping] = field(default_factory=list)
    geocoding_results: list[Optional[dict]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rows_received: int = 0
    rows_dropped: int = 0

    def to_state(self, line_items: Iterable[Any] | None = None) -> dict[str, Any]:
        """Host state store keys, as the embedding app reads them."""
        return {
            "lineItems": list(line_items or []),
            "result": self.result,
            "validationErrors": [e.to_dict() for e in self.validation_errors],
            "columnMappings": [m.to_dict() for m in self.column_mappings],
            "mode": self.mode,
            "geocodingResults": self.geocoding_results,
        }

    def metrics(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "rows_received": self.rows_received,
            "rows_dropped": self.rows_dropped,
            "rows_emitted": len(self.result),
            "validation_errors": len(self.validation_errors),
            "columns_mapped": len(self.column_mappings),
            "rows_geocoded": sum(1 for r in self.geocoding_results if r),
        }


def _ordered_headers(records: list[Mapping[str, Any]]) -> list[str]:
    seen: dict[str, None] = {}
    for record in records:
        for key in record:
            seen.setdefault(str(key), None)
    return list(seen)


class Importer:
    def __init__(
        self,
        config: ImporterConfig | None = None,
        *,
        line_items: Iterable[Any] | None = None,
        client: GeocoderClient | None = None,
    ) -> None:
        self.config = config or ImporterConfig()
        try:
            self.profile = PROFILES[self.config.profile]
        except KeyError:
            raise ValueError(f"Unknown profile '{self.config.profile}'") from None
        self.line_items = list(line_items or [])
        self.sheet_warnings: list[str] = []
        self.sheet = manifest_sheet(
            build_item_columns(
                self.line_items,
                id_field=self.profile.item_id_field,
                label_length=self.profile.label_length,
            ),
            warnings=self.sheet_warnings,
        )
        self._client = client
        self._owns_client = False
        self._listeners: list[Callable[[ImportResult], None]] = []

    def on_upload_successful(self, callback: Callable[[ImportResult], None]) -> None:
        self._listeners.append(callback)

    def geocoder(self) -> GeocoderClient | None:
        if self._client is None and self.config.api_key:
            self._client = GeocoderClient(
                self.config.api_key,
                url=self.config.geocoder_url,
                timeout=self.config.timeout,
            )
            self._owns_client = True
        return self._client

    def close(self) -> None:
        """Close a geocoder client this importer opened itself."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None
            self._owns_client = False

    def suggest(self, headers: Iterable[Any]) -> list[ColumnMapping]:
        return suggest_mappings(headers, self.sheet)

    def run(
        self,
        records: Iterable[Mapping[str, Any]],
        *,
        headers: Iterable[Any] | None = None,
        mapping_overrides: Mapping[str, str | None] | None = None,
        mode: str = MODE_MANUAL,
        on_progress: Callable[[int], None] | None = None,
        allow_errors: bool = False,
    ) -> ImportResult:
        parsed_rows = [sanitize_row(r) for r in records]
        header_list = [str(h) for h in headers] if headers is not None else _ordered_headers(parsed_rows)

        mappings = suggest_mappings(header_list, self.sheet)
        if mapping_overrides:
            mappings = apply_overrides(mappings, mapping_overrides, header_list, self.sheet)

        result = ImportResult(
            accepted=False,
            mode=mode,
            sheet=self.sheet,
            column_mappings=mappings,
            rows_received=len(parsed_rows),
        )
        result.warnings.extend(self.sheet_warnings)

        missing = missing_required_columns(mappings, self.sheet)
        if missing:
            result.warnings.append(f"Required columns not mapped: {', '.join(missing)}")

        sheet_rows = map_rows(parsed_rows, mappings, self.sheet)
        source_indices = list(range(len(sheet_rows)))
        item_ids = item_column_ids(self.sheet)
        if self.profile.drop_rows_without_items:
            sheet_rows, source_indices = drop_rows_without_items(sheet_rows, item_ids)
            result.rows_dropped = result.rows_received - len(sheet_rows)
            if result.rows_dropped:
                result.warnings.append(f"Dropped {result.rows_dropped} rows with no item quantities")

        state, errors = process_sheet(sheet_rows, self.sheet, source_indices)
        result.validation_errors = errors
        if errors and not allow_errors:
            return result

        if self.profile.key_by_label:
            rows = combine_rows(
                parsed_rows,
                state.rows,
                state.source_indices,
                self.sheet,
                [m.sheet_column_id for m in mappings],
            )
        else:
            rows = [sanitize_row(r) for r in state.rows]

        if self.profile.geocode:
            client = self.geocoder() if rows else None
            if client is not None:
                try:
                    run = geocode_rows(
                        rows,
                        client,
                        batch_size=self.config.batch_size,
                        country=self.config.country,
                        on_progress=on_progress,
                    )
                finally:
                    self.close()
                result.geocoding_results = run.results
                result.warnings.extend(run.warnings)
            rows = enrich_rows(rows, result.geocoding_results)

        result.result = rows
        result.accepted = True
        if on_progress:
            on_progress(100)
        for listener in self._listeners:
            listener(result)
        return result

    def import_dataframe(self, df, **kwargs) -> ImportResult:
        return self.run(
            records_from_dataframe(df),
            headers=[str(c) for c in df.columns],
            mode=kwargs.pop("mode", MODE_FILE),
            **kwargs,
        )

    def import_file(
        self,
        path: str | Path,
        *,
        sheet_name: Optional[str] = None,
        **kwargs,
    ) -> ImportResult:
        loaded = load_file(path, sheet_name=sheet_name)
        result = self.import_dataframe(loaded["dataframe"], **kwargs)
        result.warnings[:0] = loaded["warnings"]
        return result


def run_import(
    records: Iterable[Mapping[str, Any]],
    *,
    line_items: Iterable[Any] | None = None,
    config: ImporterConfig | None = None,
    **kwargs,
) -> ImportResult:
    return Importer(config, line_items=line_items).run(records, **kwargs)


def import_file(
    path: str | Path,
    *,
    line_items: Iterable[Any] | None = None,
    config: ImporterConfig | None = None,
    **kwargs,
) -> ImportResult:
    return Importer(config, line_items=line_items).import_file(path, **kwargs)
