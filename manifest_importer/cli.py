from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from manifest_importer import __version__ as TOOL_VERSION
from manifest_importer.config import (
    DEFAULT_CONFIG_NAME,
    ENV_OUTPUT_STAMP,
    PROFILES,
    ImporterConfig,
    load_config,
    starter_config,
)
from manifest_importer.contracts import build_run_summary, stamp
from manifest_importer.geocoding import GeocodingError
from manifest_importer.importer import Importer, ImportResult
from manifest_importer.loader import ALL_FORMATS, load_file
from manifest_importer.schema import sheet_to_dict
from manifest_importer.writer import OUTPUT_FORMATS, json_dumps, write_result

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_VALIDATE_FAILED = 5


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class ManifestImporterArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def timestamp_token() -> str:
    override = os.environ.get(ENV_OUTPUT_STAMP)
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return Path.cwd() / "manifest-importer-output" / f"{input_path.stem}-{timestamp_token()}"


def safe_output_path(explicit: Path | None, default_path: Path) -> Path:
    path = explicit or default_path
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json_dumps(payload), encoding="utf-8")


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def load_line_items(path: str | None) -> list[Any]:
    """Read line items from a JSON array, or an object holding a ``lineItems`` array."""
    if not path:
        return []
    items_path = Path(path)
    if not items_path.exists():
        raise CliError(f"Line items file not found: {items_path}", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(items_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CliError(f"Could not read line items: {exc}", EXIT_COMMAND_ERROR) from exc
    if isinstance(payload, dict):
        payload = payload.get("lineItems")
    if not isinstance(payload, list):
        raise CliError("Line items must be a JSON array or an object with a 'lineItems' array.", EXIT_COMMAND_ERROR)
    return payload


def parse_mapping_overrides(values: list[str] | None) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for raw in values or []:
        header, sep, column_id = raw.partition("=")
        if not sep or not header:
            raise CliError(f"Mapping must look like 'File column=column_id', got: {raw}", EXIT_COMMAND_ERROR)
        overrides[header] = column_id.strip()
    return overrides


def build_config(args: argparse.Namespace) -> ImporterConfig:
    try:
        config = load_config(
            getattr(args, "config", None),
            profile=getattr(args, "profile", None),
            api_key=getattr(args, "api_key", None),
            batch_size=getattr(args, "batch_size", None),
        )
    except (FileNotFoundError, ValueError) as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc
    if getattr(args, "no_geocode", False):
        config.api_key = ""
    return config


def render_import_text(result: ImportResult) -> str:
    lines = [
        "manifest-importer import",
        f"Mode: {result.mode}",
        f"Accepted: {result.accepted}",
        f"Rows received: {result.rows_received}",
        f"Rows emitted: {len(result.result)}",
        f"Columns mapped: {len(result.column_mappings)}",
        f"Validation errors: {len(result.validation_errors)}",
    ]
    if result.rows_dropped:
        lines.append(f"Rows dropped: {result.rows_dropped}")
    if result.geocoding_results:
        geocoded = sum(1 for r in result.geocoding_results if r)
        lines.append(f"Geocoded: {geocoded}/{len(result.geocoding_results)}")
    lines.extend(render_error_lines(result))
    for warning in result.warnings:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines) + "\n"


def render_error_lines(result: ImportResult, limit: int = 20) -> list[str]:
    lines = []
    for error in result.validation_errors[:limit]:
        # rows are shown 1-based to match what spreadsheet users see
        lines.append(f"- row {error.row_index + 1}, {error.column_id}: {error.message}")
    hidden = len(result.validation_errors) - limit
    if hidden > 0:
        lines.append(f"  (+{hidden} more)")
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = ManifestImporterArgumentParser(
        prog="manifest-importer",
        description="Map, validate, and geocode delivery manifest spreadsheets.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_shared(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--line-items", dest="line_items", help="JSON file with the line items to add as quantity columns")
        sub.add_argument("--config", help=f"Config path (.json), e.g. {DEFAULT_CONFIG_NAME}")
        sub.add_argument("--profile", choices=list(PROFILES), help="Import profile")
        sub.add_argument("--map", dest="mappings", action="append", metavar="COLUMN=ID", help="Override a column mapping; repeatable")
        sub.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
        sub.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
        sub.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
        sub.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    run_import = subparsers.add_parser("import", help="Import a file and write the cleaned rows.")
    run_import.add_argument("input", help="Input file path")
    add_shared(run_import)
    run_import.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    run_import.add_argument("--output", help="Explicit result output path")
    run_import.add_argument("--format", choices=list(OUTPUT_FORMATS), default="json", help="Result format")
    run_import.add_argument("--api-key", dest="api_key", help="Geocoder API key (or set MANIFEST_IMPORTER_API_KEY)")
    run_import.add_argument("--batch-size", dest="batch_size", type=int, help="Addresses per geocoding request")
    run_import.add_argument("--no-geocode", dest="no_geocode", action="store_true", help="Skip geocoding even if an API key is configured")
    run_import.add_argument("--allow-errors", dest="allow_errors", action="store_true", help="Emit rows even when validation fails")

    validate = subparsers.add_parser("validate", help="Map and validate a file without emitting rows.")
    validate.add_argument("input", help="Input file path")
    add_shared(validate)
    validate.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    validate.add_argument("--output", help="Explicit validation output path")

    columns = subparsers.add_parser("columns", help="Show the sheet columns and suggested mappings.")
    columns.add_argument("input", nargs="?", default=None, help="Optional input file to suggest mappings for")
    add_shared(columns)

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_NAME, help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def make_importer(args: argparse.Namespace) -> tuple[Importer, list[Any]]:
    config = build_config(args)
    line_items = load_line_items(args.line_items)
    return Importer(config, line_items=line_items), line_items


def require_input(args: argparse.Namespace) -> Path:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    if input_path.suffix.lower() not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{input_path.suffix.lower() or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )
    return input_path


def run_import_command(args: argparse.Namespace) -> int:
    try:
        input_path = require_input(args)
        importer, line_items = make_importer(args)
        out_dir = determine_output_dir(args, input_path)
        output_path = safe_output_path(
            Path(args.output) if args.output else None,
            out_dir / f"result.{args.format}",
        )

        def progress(percent: int) -> None:
            if args.verbose:
                emit_human(f"Progress: {percent}%", quiet=args.quiet)

        if importer.profile.geocode and not importer.config.api_key:
            emit_human("No geocoder API key configured; skipping geocoding.", quiet=args.quiet or args.json)

        result = importer.import_file(
            input_path,
            sheet_name=args.sheet_name,
            mapping_overrides=parse_mapping_overrides(args.mappings),
            on_progress=progress,
            allow_errors=args.allow_errors,
        )
        state = result.to_state(line_items)

        outputs: dict[str, str] = {}
        if result.accepted:
            outputs["result"] = str(write_result(result, output_path, args.format, state))
        summary_path = output_path.with_name("import-summary.json")
        outputs["summary"] = str(summary_path)
        summary = stamp(
            {"state": state, "config": importer.config.public_dict()},
            "manifest_importer.import_result",
            build_run_summary(
                command="import",
                input_path=input_path,
                status="ok" if result.accepted else "rejected",
                output_paths=outputs,
                metrics=result.metrics(),
                warnings=result.warnings,
            ),
        )
        write_json(summary_path, summary)

        if args.json:
            print(json_dumps(summary))
        else:
            emit_human(render_import_text(result).rstrip(), quiet=args.quiet)
            if result.accepted:
                emit_human(f"Result written: {outputs['result']}", quiet=args.quiet)
            emit_human(f"Summary written: {summary_path}", quiet=args.quiet)
        return EXIT_SUCCESS if result.accepted else EXIT_VALIDATE_FAILED
    except (CliError, GeocodingError, ImportError, FileNotFoundError, ValueError) as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_validate(args: argparse.Namespace) -> int:
    try:
        input_path = require_input(args)
        importer, _ = make_importer(args)
        importer.config.api_key = ""
        result = importer.import_file(
            input_path,
            sheet_name=args.sheet_name,
            mapping_overrides=parse_mapping_overrides(args.mappings),
            allow_errors=True,
        )
        payload = stamp(
            {
                "input": str(input_path),
                "valid": not result.validation_errors,
                "error_count": len(result.validation_errors),
                "validationErrors": [e.to_dict() for e in result.validation_errors],
                "columnMappings": [m.to_dict() for m in result.column_mappings],
            },
            "manifest_importer.validation",
            build_run_summary(
                command="validate",
                input_path=input_path,
                metrics=result.metrics(),
                warnings=result.warnings,
            ),
        )
        if args.output or args.out_dir:
            output_path = Path(args.output) if args.output else determine_output_dir(args, input_path) / "validation.json"
            write_json(output_path, payload)
            emit_human(f"Validation report: {output_path}", quiet=args.quiet)
        if args.json:
            print(json_dumps(payload))
        else:
            lines = [
                "manifest-importer validate",
                f"Input: {input_path}",
                f"Valid: {payload['valid']}",
                f"Errors: {payload['error_count']}",
                *render_error_lines(result),
                *[f"Warning: {w}" for w in result.warnings],
            ]
            emit_human("\n".join(lines), quiet=args.quiet)
        return EXIT_SUCCESS if payload["valid"] else EXIT_VALIDATE_FAILED
    except (CliError, ImportError, FileNotFoundError, ValueError) as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_columns(args: argparse.Namespace) -> int:
    try:
        importer, _ = make_importer(args)
        payload: dict[str, Any] = {"sheet": sheet_to_dict(importer.sheet)}
        if args.input:
            input_path = require_input(args)
            df = load_file(input_path, sheet_name=args.sheet_name)["dataframe"]
            mappings = importer.suggest(df.columns)
            payload["suggested_mappings"] = [m.to_dict() for m in mappings]
        if args.json:
            print(json_dumps(payload))
            return EXIT_SUCCESS
        lines = [f"Sheet: {importer.sheet.label} ({importer.sheet.id})"]
        for column in payload["sheet"]["columns"]:
            flag = " *" if column["required"] else ""
            lines.append(f"- {column['id']}: {column['label']} [{column['type']}]{flag}")
        if "suggested_mappings" in payload:
            lines.append("Suggested mappings:")
            for mapping in payload["suggested_mappings"]:
                lines.append(f"- {mapping['csvColumnName']} -> {mapping['sheetColumnId']}")
        print("\n".join(lines))
        return EXIT_SUCCESS
    except (CliError, ImportError, FileNotFoundError, ValueError) as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(starter_config(), encoding="utf-8")
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "import":
            return run_import_command(args)
        if args.command == "validate":
            return run_validate(args)
        if args.command == "columns":
            return run_columns(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
