"""TOML-backed relay configuration with ``RELAYCHAT_*`` environment overrides.

Precedence is env > file > built-in defaults. The file is written with the
defaults the first time it is looked up, so operators always have a template
to edit.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .config import RelayConfig

CONFIG_FILE_ENV = "RELAYCHAT_CONFIG_FILE"
ENV_PREFIX = "RELAYCHAT_"
DEFAULT_CONFIG_PATH = Path("configs/relaychat.toml")

SECTIONS: dict[str, tuple[str, ...]] = {
    "server": ("host", "port", "log_path", "max_log_bytes", "log_prompts"),
    "storage": ("db_path", "encryption_secret"),
    "timeouts": ("upstream_timeout_ms", "search_timeout_ms"),
    "generation": ("temperature", "max_tokens"),
    "search": ("search_result_limit",),
    "fallback": ("echo_fallback",),
}

_TRUTHY = {"1", "true", "yes", "on"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


_CASTS: dict[type, Callable[[Any], Any]] = {
    bool: _to_bool,
    int: _to_int,
    float: lambda v: float(str(v).strip()) if isinstance(v, str) else float(v),
    str: lambda v: "" if v is None else str(v),
}


def defaults() -> dict[str, Any]:
    """Built-in values for every persisted field."""
    data = asdict(RelayConfig())
    data.pop("config_file_path", None)
    return data


def _cast(key: str, value: Any) -> Any:
    # Field kinds come from the default values; every persisted field has one.
    kind = type(defaults()[key])
    return _CASTS.get(kind, lambda v: v)(value)


def _normalize(raw: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, default in defaults().items():
        try:
            out[key] = _cast(key, raw.get(key, default))
        except (TypeError, ValueError):
            out[key] = default
    return out


def config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _read(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    flat: dict[str, Any] = {}
    for section, keys in SECTIONS.items():
        table = data.get(section)
        if isinstance(table, dict):
            flat.update({k: table[k] for k in keys if k in table})
    return flat


def _ensure_file(path: Path) -> None:
    if not path.exists():
        write_config(RelayConfig(), path)


def _env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    for key in config:
        raw = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if raw is None:
            continue
        try:
            config[key] = _cast(key, raw)
        except ValueError:
            # An unparseable override leaves the file or default value in place
            pass
    return config


def load_file_config() -> dict[str, Any]:
    """File values merged over defaults, without environment overrides."""
    path = config_path()
    _ensure_file(path)
    return _normalize(_read(path))


def load_relay_config() -> RelayConfig:
    path = config_path()
    _ensure_file(path)
    cfg = RelayConfig(**_env_overrides(_normalize(_read(path))))
    cfg.config_file_path = str(path)
    return cfg


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    text = "" if value is None else str(value)
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_config(config: RelayConfig) -> str:
    values = asdict(config)
    lines = ["# relaychat relay configuration. Environment variables override these."]
    for section, keys in SECTIONS.items():
        lines.append("")
        lines.append(f"[{section}]")
        lines.extend(f"{key} = {_toml_value(values[key])}" for key in keys)
    return "\n".join(lines) + "\n"


def write_config(config: RelayConfig, path: Path | None = None) -> None:
    """Atomically replace the config file with ``config``."""
    target = Path(path or config_path()).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=".relaychat_config_", suffix=".toml", dir=target.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(render_config(config))
        Path(tmp_name).replace(target)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


def update_config_file(updates: dict[str, Any]) -> RelayConfig:
    """Merge ``updates`` into the file and return the effective runtime config.

    Raises ``KeyError`` naming any field the relay does not know.
    """
    unknown = sorted(set(updates) - set(defaults()))
    if unknown:
        raise KeyError(f"Unknown configuration field(s): {', '.join(unknown)}")

    current = load_file_config()
    current.update(updates)
    write_config(RelayConfig(**_normalize(current)), config_path())
    return load_relay_config()


def list_env_overrides() -> dict[str, str]:
    return {
        key: value
        for key, value in os.environ.items()
        if key.startswith(ENV_PREFIX) and key != CONFIG_FILE_ENV
    }
