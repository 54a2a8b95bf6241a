import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import pandas as pd

from manifest_importer.config import ImporterConfig
from manifest_importer.importer import Importer, import_file, run_import


ROOT = Path(__file__).resolve().parents[1]
SAMPLE = ROOT / "sample-data" / "manifest_sample.csv"
INVALID = ROOT / "sample-data" / "manifest_invalid.csv"
LINE_ITEMS = json.loads((ROOT / "sample-data" / "line_items.json").read_text(encoding="utf-8"))["lineItems"]


class FakeClient:
    def __init__(self):
        self.calls = []
        self.closed = False

    def close(self):
        self.closed = True

    def bulk_geocode(self, addresses):
        self.calls.append(list(addresses))
        return [
            {
                "full_address": address,
                "address": address.upper(),
                "postal_code": address[-6:],
                "country": "SG",
                "longitude": 103.8,
                "latitude": 1.3,
            }
            for address in addresses
        ]


class DeliveryProfileTests(unittest.TestCase):
    def test_sample_file_is_accepted_with_clean_values_under_labels(self):
        result = import_file(SAMPLE, line_items=LINE_ITEMS)
        self.assertTrue(result.accepted)
        self.assertEqual(result.mode, "file")
        self.assertEqual(result.validation_errors, [])
        self.assertEqual(len(result.result), 3)

        first = result.result[0]
        self.assertEqual(first["Sender name"], "Tan Ah Kow")
        self.assertEqual(first["Recipient contact number"], "6591234567")
        self.assertEqual(first["Delivery postal code"], "048616")
        self.assertEqual(first["[#101] Chicken rice"], 3)
        self.assertEqual(first["[#102] Laksa"], 0)
        # not geocoded without an API key, but the columns are always present
        self.assertEqual(first["Full address"], "")
        self.assertIsNone(first["Latitude"])
        self.assertEqual(result.geocoding_results, [])

        second = result.result[1]
        self.assertEqual(second["Fulfilment type"], "pickup")
        self.assertEqual(second["Delivery date"], "2026-11-03")
        self.assertEqual(second["Recipient contact number"], "6587654321")

    def test_labels_are_cut_to_thirty_characters(self):
        items = [{"item_id": 7, "name": "Extra large family seafood platter"}]
        importer = Importer(line_items=items)
        self.assertEqual(importer.sheet.column("7").label, "[#7] Extra large family sea...")
        self.assertEqual(len(importer.sheet.column("7").label), 30)

    def test_invalid_file_is_rejected_with_every_error(self):
        result = import_file(INVALID, line_items=LINE_ITEMS)
        self.assertFalse(result.accepted)
        self.assertEqual(result.result, [])
        self.assertEqual(len(result.validation_errors), 10)
        first_row = {e.column_id for e in result.validation_errors if e.row_index == 0}
        self.assertEqual(
            first_row,
            {
                "fulfilment_type",
                "recipient_email",
                "recipient_contact_number",
                "serving_date",
                "delivery_timeslot",
                "postal_code",
                "101",
            },
        )
        second_row = {e.column_id for e in result.validation_errors if e.row_index == 1}
        self.assertEqual(second_row, {"sender_name", "address_line1", "101"})

    def test_allow_errors_emits_rows_anyway(self):
        result = import_file(INVALID, line_items=LINE_ITEMS, allow_errors=True)
        self.assertTrue(result.accepted)
        self.assertEqual(len(result.result), 2)
        self.assertEqual(len(result.validation_errors), 10)

    def test_geocoding_uses_cleaned_addresses_and_reports_progress(self):
        client = FakeClient()
        importer = Importer(ImporterConfig(batch_size=2), line_items=LINE_ITEMS, client=client)
        progress = []
        result = importer.import_file(SAMPLE, on_progress=progress.append)
        self.assertEqual(
            client.calls,
            [
                ["1 Raffles Place #20-01 Singapore 048616", "10 Anson Road Singapore 079903"],
                ["80 Robinson Road Level 5 Singapore 068898"],
            ],
        )
        self.assertEqual(progress, [50, 72, 95, 100])
        self.assertEqual(result.result[0]["Postal code"], "048616")
        self.assertEqual(result.result[2]["Country"], "SG")
        self.assertEqual(result.metrics()["rows_geocoded"], 3)

    def test_listeners_fire_only_for_accepted_imports(self):
        importer = Importer(line_items=LINE_ITEMS)
        seen = []
        importer.on_upload_successful(seen.append)
        importer.import_file(INVALID)
        self.assertEqual(seen, [])
        result = importer.import_file(SAMPLE)
        self.assertEqual(seen, [result])


class LogisticsProfileTests(unittest.TestCase):
    def setUp(self):
        self.importer = Importer(ImporterConfig(profile="logistics"), line_items=LINE_ITEMS)

    def test_rows_without_quantities_are_dropped(self):
        result = self.importer.import_file(SAMPLE)
        self.assertTrue(result.accepted)
        self.assertEqual(result.rows_received, 3)
        self.assertEqual(result.rows_dropped, 1)
        self.assertIn("Dropped 1 rows with no item quantities", result.warnings)
        self.assertEqual([row["recipient_name"] for row in result.result], ["Siti Rahman", "Lim Wei"])

    def test_rows_are_keyed_by_column_id_and_never_geocoded(self):
        result = self.importer.import_file(SAMPLE)
        row = result.result[0]
        self.assertEqual(row["postal_code"], "048616")
        self.assertEqual(row["101"], 3)
        self.assertEqual(row["102"], 0)
        self.assertNotIn("Full address", row)
        self.assertEqual(result.geocoding_results, [])

    def test_full_labels_are_kept(self):
        importer = Importer(
            ImporterConfig(profile="logistics"),
            line_items=[{"id": 7, "name": "Extra large family seafood platter"}],
        )
        self.assertEqual(importer.sheet.column("7").label, "[#7] Extra large family seafood platter")


class JsonUploadTests(unittest.TestCase):
    def test_numeric_json_cells_validate_like_text(self):
        base = {
            "Fulfilment type": "delivery",
            "Sender name": "Kitchen",
            "Recipient name": "Siti",
            "Delivery date": "2026-11-02",
            "Delivery timeslot": "morning",
            "Delivery address line1": "1 Raffles Place",
        }
        rows = [
            dict(base, **{"Recipient contact number": 91234567, "Delivery postal code": 48616}),
            dict(base, **{"Recipient contact number": 87654321}),
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "manifest.json"
            path.write_text(json.dumps(rows), encoding="utf-8")
            result = import_file(path, allow_errors=True)
        self.assertEqual(
            [(e.row_index, e.column_id, e.message) for e in result.validation_errors],
            [(1, "postal_code", "This field is required")],
        )
        self.assertEqual(result.result[0]["Delivery postal code"], "048616")
        self.assertEqual(result.result[0]["Recipient contact number"], "6591234567")
        self.assertEqual(result.result[1]["Recipient contact number"], "6587654321")


class LineItemCollisionTests(unittest.TestCase):
    def test_duplicate_line_item_is_skipped_and_reported(self):
        record = {
            "Fulfilment type": "delivery",
            "Sender name": "Kitchen",
            "Recipient name": "Siti",
            "Recipient contact number": "91234567",
            "Delivery date": "2026-11-02",
            "Delivery timeslot": "morning",
            "Delivery address line1": "1 Raffles Place",
            "Delivery postal code": "048616",
            "[#1] A": "2",
        }
        result = run_import([record], line_items=[{"item_id": 1, "name": "A"}, {"item_id": 1, "name": "A again"}])
        self.assertTrue(result.accepted)
        self.assertEqual(result.result[0]["[#1] A"], 2)
        self.assertEqual(len(result.warnings), 1)
        self.assertIn("Skipped line item '[#1] A again'", result.warnings[0])


class GeocoderLifecycleTests(unittest.TestCase):
    def test_importer_closes_the_client_it_opened(self):
        with mock.patch("manifest_importer.importer.GeocoderClient") as client_cls:
            client = client_cls.return_value
            client.bulk_geocode.side_effect = FakeClient().bulk_geocode
            importer = Importer(ImporterConfig(api_key="secret"), line_items=LINE_ITEMS)
            result = importer.import_file(SAMPLE)
        self.assertTrue(result.accepted)
        self.assertEqual(client.bulk_geocode.call_count, 1)
        client.close.assert_called_once_with()
        self.assertIsNone(importer._client)

    def test_injected_client_is_left_open(self):
        client = FakeClient()
        importer = Importer(line_items=LINE_ITEMS, client=client)
        importer.import_file(SAMPLE)
        self.assertEqual(len(client.calls), 1)
        self.assertFalse(client.closed)
        self.assertIs(importer.geocoder(), client)


class ManualModeTests(unittest.TestCase):
    def test_records_with_overrides(self):
        records = [{
            "Type": "delivery",
            "From": "Kitchen",
            "To": "Siti",
            "Phone": "91234567",
            "Delivery date": "2026-11-02",
            "Slot": "morning",
            "Delivery address line1": "1 Raffles Place",
            "Delivery postal code": "048616",
        }]
        result = run_import(
            records,
            mapping_overrides={
                "Type": "fulfilment_type",
                "From": "sender_name",
                "To": "recipient_name",
                "Phone": "recipient_contact_number",
                "Slot": "delivery_timeslot",
            },
        )
        self.assertTrue(result.accepted)
        self.assertEqual(result.mode, "manual")
        self.assertEqual(result.result[0]["Phone"], "91234567")
        self.assertEqual(result.result[0]["Recipient contact number"], "6591234567")
        self.assertEqual(result.warnings, [])

    def test_unmapped_required_columns_warn_and_fail_validation(self):
        result = run_import([{"Recipient name": "Siti"}])
        self.assertFalse(result.accepted)
        self.assertTrue(result.warnings[0].startswith("Required columns not mapped:"))
        self.assertIn("fulfilment_type", result.warnings[0])

    def test_dataframe_input_and_state_keys(self):
        df = pd.read_csv(SAMPLE, dtype=str, keep_default_na=False)
        importer = Importer(line_items=LINE_ITEMS)
        result = importer.import_dataframe(df)
        state = result.to_state(LINE_ITEMS)
        self.assertEqual(
            set(state),
            {"lineItems", "result", "validationErrors", "columnMappings", "mode", "geocodingResults"},
        )
        self.assertEqual(state["mode"], "file")
        self.assertEqual(state["lineItems"], LINE_ITEMS)
        self.assertIn(
            {"csvColumnName": "Delivery postal code", "sheetId": "logistics_manifest", "sheetColumnId": "postal_code"},
            state["columnMappings"],
        )

    def test_unknown_profile_raises(self):
        with self.assertRaisesRegex(ValueError, "Unknown profile"):
            Importer(ImporterConfig(profile="nope"))


if __name__ == "__main__":
    unittest.main()
