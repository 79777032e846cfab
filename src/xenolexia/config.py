from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

import tomllib

from .wordlist import PROFICIENCY_BANDS

CONFIG_ENV = "XENOLEXIA_CONFIG"
DEFAULT_DENSITY = 0.15
DEFAULT_BAND = "beginner"


@dataclass(slots=True)
class ReaderSettings:
    source_lang: str = "en"
    target_lang: str = "el"
    band: str = DEFAULT_BAND
    density: float = DEFAULT_DENSITY
    debug: bool = False

    def validate(self) -> "ReaderSettings":
        if self.band not in PROFICIENCY_BANDS:
            raise ValueError(
                f"Unknown proficiency band {self.band!r}; expected one of {', '.join(PROFICIENCY_BANDS)}"
            )
        if math.isnan(self.density) or not 0.0 <= self.density <= 1.0:
            raise ValueError(f"Density must be between 0 and 1, got {self.density}")
        if not self.source_lang or not self.target_lang:
            raise ValueError("Source and target languages must be non-empty")
        return self

    def with_overrides(self, **overrides: object) -> "ReaderSettings":
        """Return a copy with every non-None override applied."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values).validate()


def default_config_path() -> Path:
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".config" / "xenolexia" / "config.toml"


def _settings_from_table(table: Mapping[str, object]) -> ReaderSettings:
    settings = ReaderSettings()
    source_lang = table.get("source_lang")
    if isinstance(source_lang, str):
        settings.source_lang = source_lang.strip()
    target_lang = table.get("target_lang")
    if isinstance(target_lang, str):
        settings.target_lang = target_lang.strip()
    band = table.get("band")
    if isinstance(band, str):
        settings.band = band.strip().lower()
    density = table.get("density")
    if isinstance(density, bool):
        raise ValueError("Density must be a number")
    if isinstance(density, (int, float)):
        settings.density = float(density)
    elif density is not None:
        raise ValueError(f"Density must be a number, got {density!r}")
    debug = table.get("debug")
    if isinstance(debug, bool):
        settings.debug = debug
    return settings


def load_settings(path: Path | None = None) -> ReaderSettings:
    config_path = path or default_config_path()
    try:
        with config_path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        return ReaderSettings()
    table = data.get("reader", {})
    if not isinstance(table, Mapping):
        raise ValueError(f"[reader] in {config_path} must be a table")
    return _settings_from_table(table).validate()
