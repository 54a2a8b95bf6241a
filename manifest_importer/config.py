from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from manifest_importer.geocoding import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_COUNTRY,
    DEFAULT_TIMEOUT,
    GEOCODER_URL,
)

ENV_API_KEY      = "MANIFEST_IMPORTER_API_KEY"
ENV_GEOCODER_URL = "MANIFEST_IMPORTER_GEOCODER_URL"
ENV_OUTPUT_STAMP = "MANIFEST_IMPORTER_OUTPUT_STAMP"

DEFAULT_CONFIG_NAME = "manifest-importer.json"
SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}
PROFILES = ("delivery", "logistics")


@dataclass
class ImporterConfig:
    geocoder_url: str = GEOCODER_URL
    api_key: str = ""
    batch_size: int = DEFAULT_BATCH_SIZE
    timeout: float = DEFAULT_TIMEOUT
    country: str = DEFAULT_COUNTRY
    profile: str = "delivery"

    def validate(self) -> "ImporterConfig":
        if self.profile not in PROFILES:
            raise ValueError(f"Unknown profile '{self.profile}'. Choose from: {', '.join(PROFILES)}")
        if int(self.batch_size) < 1:
            raise ValueError("batch_size must be at least 1")
        if float(self.timeout) <= 0:
            raise ValueError("timeout must be positive")
        self.batch_size = int(self.batch_size)
        self.timeout = float(self.timeout)
        return self

    def public_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["api_key"] = "***" if self.api_key else ""
        return payload


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ValueError("Config must be .json, .yml, or .yaml")
    if suffix in {".yml", ".yaml"}:
        raise ValueError("YAML configs are not supported yet. Use JSON for now.")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Could not read config: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Config root must be a JSON object.")
    known = {f.name for f in fields(ImporterConfig)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    return payload


def load_config(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ImporterConfig:
    """
    Build the effective config: defaults, then the JSON file, then environment
    variables, then explicit keyword overrides (None values are ignored).
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_config_file(Path(path)))
    if env.get(ENV_API_KEY):
        values["api_key"] = env[ENV_API_KEY]
    if env.get(ENV_GEOCODER_URL):
        values["geocoder_url"] = env[ENV_GEOCODER_URL]
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ImporterConfig(**values).validate()


def starter_config() -> str:
    payload = asdict(ImporterConfig())
    return json.dumps(payload, indent=2) + "\n"
