"""Versioned contracts stamped on every machine-readable importer output."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from manifest_importer import __version__ as TOOL_VERSION

CONTRACT_VERSIONS = {
    "manifest_importer.import_result": "1.0.0",
    "manifest_importer.validation": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_path: Path | None,
    status: str = "ok",
    output_paths: dict[str, str] | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "manifest-importer",
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path) if input_path else None,
        "output_files": dict(output_paths or {}),
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def stamp(payload: dict[str, Any], contract_name: str, run_summary: dict[str, Any]) -> dict[str, Any]:
    contract = build_contract(contract_name)
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "run_summary": run_summary,
        **payload,
    }
