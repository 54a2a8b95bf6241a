#!/usr/bin/env python3
from __future__ import annotations

import json
import sys
import tempfile
from pathlib import Path

import pandas as pd
import streamlit as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from manifest_importer.config import PROFILES, load_config
from manifest_importer.importer import Importer
from manifest_importer.loader import ALL_FORMATS, load_file
from manifest_importer.writer import json_dumps, render_csv, workbook_bytes

UNMAPPED = "(not mapped)"


def ensure_state() -> None:
    st.session_state.setdefault("state", {})
    st.session_state.setdefault("upload_successful", 0)


def parse_line_items(raw: str) -> list:
    if not raw.strip():
        return []
    payload = json.loads(raw)
    if isinstance(payload, dict):
        payload = payload.get("lineItems", [])
    if not isinstance(payload, list):
        raise ValueError("Line items must be a JSON array")
    return payload


def load_upload(upload, sheet_name: str | None) -> dict:
    suffix = Path(upload.name).suffix.lower()
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / f"upload{suffix}"
        path.write_bytes(upload.getvalue())
        return load_file(path, sheet_name=sheet_name)


def render_mapping_editor(importer: Importer, headers: list[str]) -> dict[str, str | None]:
    suggested = {m.csv_column_name: m.sheet_column_id for m in importer.suggest(headers)}
    options = [UNMAPPED] + importer.sheet.column_ids
    labels = {c.id: f"{c.label}{' *' if c.is_required else ''}" for c in importer.sheet.columns}
    overrides: dict[str, str | None] = {}
    st.subheader("Column mapping")
    cols = st.columns(2)
    for i, header in enumerate(headers):
        current = suggested.get(header, UNMAPPED)
        choice = cols[i % 2].selectbox(
            header,
            options=options,
            index=options.index(current),
            format_func=lambda value: value if value == UNMAPPED else labels[value],
            key=f"map_{header}",
        )
        if choice != current:
            overrides[header] = None if choice == UNMAPPED else choice
    return overrides


def render_result(state: dict, result) -> None:
    st.subheader("Result")
    metrics = st.columns(3)
    metrics[0].metric("Rows emitted", len(state["result"]))
    metrics[1].metric("Validation errors", len(state["validationErrors"]))
    metrics[2].metric("Geocoded", sum(1 for r in state["geocodingResults"] if r))
    for warning in result.warnings:
        st.warning(warning)
    if state["validationErrors"]:
        st.error("Fix the validation errors below and upload again, or allow errors to import anyway.")
        st.dataframe(pd.DataFrame(state["validationErrors"]), width="stretch")
    if state["result"]:
        st.dataframe(pd.DataFrame(state["result"]), width="stretch")
        downloads = st.columns(3)
        downloads[0].download_button("Download JSON", data=json_dumps(state), file_name="result.json", mime="application/json")
        downloads[1].download_button("Download CSV", data=render_csv(state["result"]), file_name="result.csv", mime="text/csv")
        downloads[2].download_button(
            "Download workbook",
            data=workbook_bytes(result),
            file_name="result.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
    with st.expander("Host state"):
        st.json(state)


def main() -> None:
    st.set_page_config(page_title="manifest-importer", layout="wide", initial_sidebar_state="expanded")
    ensure_state()
    st.title("manifest-importer")
    st.caption("Upload a delivery manifest, check the column mapping, and import the cleaned rows.")

    with st.sidebar:
        profile = st.radio("Profile", options=list(PROFILES), horizontal=True)
        api_key = st.text_input("Geocoder API key", type="password")
        raw_items = st.text_area("Line items (JSON)", height=160, placeholder='[{"item_id": 1, "name": "Chicken rice"}]')
        allow_errors = st.checkbox("Allow validation errors", value=False)

    try:
        line_items = parse_line_items(raw_items)
        config = load_config(profile=profile, api_key=api_key or None)
        importer = Importer(config, line_items=line_items)
    except (ValueError, json.JSONDecodeError) as exc:
        st.error(str(exc))
        return

    upload = st.file_uploader("Upload manifest", type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)])
    if upload is None:
        st.info("Supported: " + " ".join(sorted(ALL_FORMATS)))
        return

    sheet_name = st.text_input("Sheet name (workbooks only)", value="") or None
    try:
        loaded = load_upload(upload, sheet_name)
    except (ValueError, ImportError) as exc:
        st.error(str(exc))
        return

    df = loaded["dataframe"]
    st.dataframe(df.head(20), width="stretch")
    overrides = render_mapping_editor(importer, [str(c) for c in df.columns])

    if not st.button("Import", type="primary"):
        return

    progress = st.progress(0)
    importer.on_upload_successful(lambda _: st.session_state.update(upload_successful=st.session_state["upload_successful"] + 1))
    try:
        result = importer.import_dataframe(
            df,
            mapping_overrides=overrides,
            on_progress=lambda percent: progress.progress(percent),
            allow_errors=allow_errors,
        )
    except ValueError as exc:
        st.error(str(exc))
        return
    result.warnings[:0] = loaded["warnings"]
    state = result.to_state(line_items)
    st.session_state["state"] = state
    if result.accepted:
        st.success("Upload successful")
    render_result(state, result)


if __name__ == "__main__":
    main()
