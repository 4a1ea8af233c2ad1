"""Runtime settings resolved from the environment with CLI overrides."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

DEFAULT_PORT = 18150
DEFAULT_PDF_COMMAND = ("ksef-pdf-generator",)


def _env_flag(name: str) -> bool:
    value = os.getenv(name, "").strip().lower()
    return value in {"1", "true", "yes", "on"}


def _env_path(name: str, default: str) -> Path:
    return Path(os.getenv(name) or default).expanduser()


@dataclass(slots=True)
class Settings:
    config_path: Path
    cache_dir: Path
    output_dir: Path
    port: int = DEFAULT_PORT
    lan: bool = False
    no_token_cache: bool = False
    use_invoice_number: bool = False
    open_browser: bool = True
    pdf_command: tuple[str, ...] = field(default=DEFAULT_PDF_COMMAND)

    @property
    def host(self) -> str:
        return "0.0.0.0" if self.lan else "127.0.0.1"

    @property
    def token_store_path(self) -> Path:
        return self.cache_dir / "tokens.json"

    @property
    def result_cache_path(self) -> Path:
        return self.cache_dir / "invoice-cache.duckdb"

    @property
    def prefs_path(self) -> Path:
        return self.cache_dir / "gui-prefs.json"

    @classmethod
    def from_env(cls) -> "Settings":
        port_raw = os.getenv("KSEF_GUI_PORT")
        command_raw = os.getenv("KSEF_GUI_PDF_COMMAND")
        return cls(
            config_path=_env_path("KSEF_GUI_CONFIG", "~/.config/ksef-gui/config.yaml"),
            cache_dir=_env_path("KSEF_GUI_CACHE_DIR", "~/.cache/ksef-gui"),
            output_dir=_env_path("KSEF_GUI_OUTPUT_DIR", "."),
            port=int(port_raw) if port_raw else DEFAULT_PORT,
            lan=_env_flag("KSEF_GUI_LAN"),
            no_token_cache=_env_flag("KSEF_GUI_NO_TOKEN_CACHE"),
            pdf_command=tuple(command_raw.split()) if command_raw else DEFAULT_PDF_COMMAND,
        )

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Apply CLI values; ``None`` means "not given" and keeps the current value."""

        values = {key: value for key, value in overrides.items() if value is not None}
        for key in ("config_path", "cache_dir", "output_dir"):
            if key in values:
                values[key] = Path(values[key]).expanduser()
        return replace(self, **values)
