"""
geocoding.py — Batch geocoding of manifest delivery addresses

Addresses are sent to the geocoder service as a JSON array, one batch per
request, strictly one request at a time. A failed batch is reported as a
warning and leaves its rows without coordinates; the import carries on.

Public API:
    client = GeocoderClient(api_key)
    run    = geocode_rows(rows, client, on_progress=print)
    rows   = enrich_rows(rows, run.results)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import requests

GEOCODER_URL       = "https://geocoder-service.atlas.kitchen/"
DEFAULT_BATCH_SIZE = 100
DEFAULT_TIMEOUT    = 30
DEFAULT_COUNTRY    = "Singapore"

ADDRESS_LINE1_KEY = "Delivery address line1"
ADDRESS_LINE2_KEY = "Delivery address line2"
POSTAL_CODE_KEY   = "Delivery postal code"

# progress band owned by geocoding: 50% at the first batch, 95% after the last
PROGRESS_START = 50
PROGRESS_SPAN  = 45


class GeocodingError(Exception):
    pass


@dataclass
class GeocodingRun:
    results: list[Optional[dict]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    batches: int = 0
    addresses: int = 0


class GeocoderClient:
    def __init__(
        self,
        api_key: str,
        url: str = GEOCODER_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("A geocoder API key is required")
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "GeocoderClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def bulk_geocode(self, addresses: list[str]) -> list[Any]:
        """POST one batch of addresses and return the service's ``results`` list."""
        try:
            response = self.session.post(
                self.url,
                json=list(addresses),
                headers={"Content-Type": "application/json", "X-API-KEY": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GeocodingError(f"Geocoder request failed: {exc}") from exc

        if not response.ok:
            raise GeocodingError(f"Geocoder returned {response.status_code} {response.reason}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise GeocodingError(f"Geocoder returned invalid JSON: {exc}") from exc

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise GeocodingError("Unexpected geocoding response format: missing 'results' list")
        return results


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value)


def format_address(
    address_line1: Any = "",
    address_line2: Any = "",
    postal_code: Any = "",
    country: str = DEFAULT_COUNTRY,
) -> str:
    postal = _text(postal_code).strip()
    parts = [
        _text(address_line1),
        _text(address_line2),
        f"{country} {postal}".strip() if postal else "",
    ]
    return " ".join(p for p in parts if p.strip()).strip()


def address_for_row(row: Mapping[str, Any], country: str = DEFAULT_COUNTRY) -> str:
    return format_address(
        row.get(ADDRESS_LINE1_KEY),
        row.get(ADDRESS_LINE2_KEY),
        row.get(POSTAL_CODE_KEY),
        country=country,
    )


def geocode_rows(
    rows: list[Mapping[str, Any]],
    client: GeocoderClient,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    country: str = DEFAULT_COUNTRY,
    on_progress: Callable[[int], None] | None = None,
) -> GeocodingRun:
    """
    Geocode the delivery address of every row, ``batch_size`` addresses per call.

    ``results`` is aligned with ``rows``: rows without an address, and rows in
    a failed batch, get None.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    run = GeocodingRun(results=[None] * len(rows))
    pending = [(i, address_for_row(row, country)) for i, row in enumerate(rows)]
    pending = [(i, address) for i, address in pending if address]
    run.addresses = len(pending)
    if not pending:
        return run

    if on_progress:
        on_progress(PROGRESS_START)

    total_batches = math.ceil(len(pending) / batch_size)
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        batch_no = start // batch_size + 1
        try:
            results = client.bulk_geocode([address for _, address in batch])
        except GeocodingError as exc:
            run.warnings.append(f"Batch {batch_no}/{total_batches}: {exc}")
            results = []

        if results and len(results) != len(batch):
            run.warnings.append(
                f"Batch {batch_no}/{total_batches}: expected {len(batch)} results, got {len(results)}"
            )
        for (row_index, _), result in zip(batch, results):
            run.results[row_index] = result if isinstance(result, dict) else None

        run.batches = batch_no
        if on_progress:
            on_progress(PROGRESS_START + math.floor(batch_no / total_batches * PROGRESS_SPAN))

    return run


def enrich_rows(rows: list[Mapping[str, Any]], results: list[Any] | None) -> list[dict[str, Any]]:
    """Merge geocoding results into rows by position."""
    results = results if isinstance(results, list) else []
    enriched = []
    for index, row in enumerate(rows):
        result = results[index] if index < len(results) else None
        if not isinstance(result, dict):
            result = {}
        enriched.append({
            **row,
            "Full address": result.get("full_address") or "",
            "Geocoded address": result.get("address") or "",
            "Postal code": result.get("postal_code") or "",
            "Country": result.get("country") or "",
            "Longitude": result.get("longitude") or None,
            "Latitude": result.get("latitude") or None,
        })
    return enriched
