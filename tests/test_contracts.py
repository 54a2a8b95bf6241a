from __future__ import annotations

import re
import unittest
from pathlib import Path

from manifest_importer import __version__
from manifest_importer.contracts import (
    CONTRACT_VERSIONS,
    build_contract,
    build_run_summary,
    stamp,
    utc_now_iso,
)


class ContractTests(unittest.TestCase):
    def test_every_contract_is_versioned(self):
        for name, version in CONTRACT_VERSIONS.items():
            self.assertEqual(build_contract(name), {"name": name, "version": version})
        with self.assertRaises(KeyError):
            build_contract("manifest_importer.unknown")

    def test_utc_timestamp_format(self):
        self.assertRegex(utc_now_iso(), r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

    def test_run_summary(self):
        summary = build_run_summary(
            command="import",
            input_path=Path("sample-data/manifest_sample.csv"),
            status="rejected",
            output_paths={"summary": "out/import-summary.json"},
            metrics={"rows_received": 3},
            warnings=["one", "two"],
        )
        self.assertEqual(summary["tool"], "manifest-importer")
        self.assertEqual(summary["status"], "rejected")
        self.assertEqual(summary["input_file"], str(Path("sample-data/manifest_sample.csv")))
        self.assertEqual(summary["warnings_count"], 2)
        self.assertEqual(summary["metrics"], {"rows_received": 3})

    def test_run_summary_defaults(self):
        summary = build_run_summary(command="validate", input_path=None)
        self.assertIsNone(summary["input_file"])
        self.assertEqual(summary["status"], "ok")
        self.assertEqual(summary["output_files"], {})
        self.assertEqual(summary["warnings"], [])

    def test_stamp_adds_contract_header(self):
        summary = build_run_summary(command="validate", input_path=None)
        payload = stamp({"valid": True}, "manifest_importer.validation", summary)
        self.assertEqual(payload["contract"]["name"], "manifest_importer.validation")
        self.assertEqual(payload["schema_version"], CONTRACT_VERSIONS["manifest_importer.validation"])
        self.assertEqual(payload["tool_version"], __version__)
        self.assertIs(payload["run_summary"], summary)
        self.assertTrue(payload["valid"])
        self.assertTrue(re.match(r"^\d+\.\d+\.\d+$", payload["tool_version"]))


if __name__ == "__main__":
    unittest.main()
