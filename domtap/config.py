"""Run configuration: ports, paths and timings.

Values are layered: built-in defaults, then ~/.domtap/config.json (or the
file named by DOMTAP_CONFIG), then environment variables, then explicit
overrides from the caller or CLI.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

CONFIG_DIR = Path.home() / ".domtap"
CONFIG_FILE = CONFIG_DIR / "config.json"

# env var → (field, converter)
_ENV_VARS: dict[str, tuple[str, Any]] = {
    "DOMTAP_PORT": ("debugging_port", int),
    "DOMTAP_HOST": ("host", str),
    "CHROME_PATH": ("browser_path", str),
    "DOMTAP_PROFILE_DIR": ("profile_dir", str),
    "DOMTAP_HEADLESS": ("headless", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
}


@dataclass
class Config:
    """Everything a run needs to know up front."""

    debugging_port: int = 9222
    host: str = "127.0.0.1"
    browser_path: str | None = None
    profile_dir: str | None = None
    target_url: str = "about:blank"
    headless: bool = False
    startup_timeout: float = 10.0
    load_timeout: float = 30.0
    html_path: str = "site.html"
    screenshot_path: str = "screenshot.png"
    typing_delay_ms: int = 100
    screenshot_settle: float = 3.0

    @property
    def cdp_url(self) -> str:
        return f"http://{self.host}:{self.debugging_port}"


def _config_path() -> Path:
    env = os.environ.get("DOMTAP_CONFIG")
    return Path(env).expanduser() if env else CONFIG_FILE


def _read_file(path: Path) -> dict[str, Any]:
    """Load the JSON config file, or return {} if missing or unreadable."""
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            return {}
        if isinstance(data, dict):
            return data
    return {}


def _from_env() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for var, (name, convert) in _ENV_VARS.items():
        raw = os.environ.get(var)
        if raw:
            try:
                values[name] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {var}: {raw!r}") from None
    return values


def load_config(path: str | Path | None = None, **overrides: Any) -> Config:
    """Build a Config from file, environment and ``overrides``.

    Unknown keys in the file are ignored. ``None`` overrides are skipped
    so CLI flags that were not given do not clobber lower layers.
    """
    known = {f.name for f in fields(Config)}
    file_values = _read_file(Path(path).expanduser() if path else _config_path())

    merged: dict[str, Any] = {k: v for k, v in file_values.items() if k in known}
    merged.update(_from_env())
    for key, value in overrides.items():
        if key not in known:
            raise TypeError(f"Unknown config option: {key}")
        if value is not None:
            merged[key] = value
    return replace(Config(), **merged)


def save_config(config: Config, path: str | Path | None = None) -> Path:
    """Write ``config`` as JSON. Returns the path written."""
    target = Path(path).expanduser() if path else _config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    data = {f.name: getattr(config, f.name) for f in fields(Config)}
    target.write_text(json.dumps(data, indent=2) + "\n")
    return target
