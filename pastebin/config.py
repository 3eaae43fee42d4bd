import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from pastebin.domain.enums import IdAllocatorKind
from pastebin.domain.errors import ConfigError

CONFIG_ENV = "PASTEBIN_CONFIG"


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path = Path("data")
    address: str = "127.0.0.1"
    port: int = 3000
    base_url: str = "http://localhost:3000/"
    db: Path | None = None
    uploads: Path | None = None
    filter_allow: bool = False
    filter_types: tuple[str, ...] = field(default_factory=tuple)
    max_body_size: int = 512_000_000
    id_allocator: IdAllocatorKind = IdAllocatorKind.tick
    id_tick_seconds: float = 1.0
    site_name: str = "pastebin"
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.db if self.db is not None else self.data_dir / "pastebin.sqlite3"

    @property
    def uploads_dir(self) -> Path:
        return self.uploads if self.uploads is not None else self.data_dir / "uploads"


# TOML key -> (AppConfig field, converter)
_KEYS: dict[str, tuple[str, Any]] = {
    "data-dir": ("data_dir", Path),
    "address": ("address", str),
    "port": ("port", int),
    "base-url": ("base_url", str),
    "db": ("db", Path),
    "uploads": ("uploads", Path),
    "filter-allow": ("filter_allow", bool),
    "filter-types": ("filter_types", lambda v: tuple(str(t).strip().lower() for t in v)),
    "max-body-size": ("max_body_size", int),
    "id-allocator": ("id_allocator", IdAllocatorKind),
    "id-tick-seconds": ("id_tick_seconds", float),
    "name": ("site_name", str),
    "log-level": ("log_level", lambda v: str(v).upper()),
}

_ENV: dict[str, str] = {
    "PASTEBIN_DATA_DIR": "data-dir",
    "PASTEBIN_BASE_URL": "base-url",
    "PASTEBIN_LOG_LEVEL": "log-level",
}


def _apply(cfg: AppConfig, raw: dict[str, Any]) -> AppConfig:
    changes: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in _KEYS:
            raise ConfigError("unknown_key", f"unknown config key: {key}")
        attr, convert = _KEYS[key]
        try:
            changes[attr] = convert(value)
        except (TypeError, ValueError) as e:
            raise ConfigError("invalid_value", f"invalid value for {key}: {value!r}") from e
    return replace(cfg, **changes)


def _validate(cfg: AppConfig) -> AppConfig:
    if cfg.max_body_size <= 0:
        raise ConfigError("invalid_value", "max-body-size must be positive")
    if cfg.id_tick_seconds < 0:
        raise ConfigError("invalid_value", "id-tick-seconds must not be negative")
    if not cfg.base_url.endswith("/"):
        cfg = replace(cfg, base_url=cfg.base_url + "/")
    return cfg


def parse_config(text: str) -> AppConfig:
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError("invalid_toml", str(e)) from e
    return _validate(_apply(AppConfig(), raw))


def load_config(path: str | Path | None = None) -> AppConfig:
    """Build the service configuration.

    Order: built-in defaults, then the TOML file (`path` or $PASTEBIN_CONFIG),
    then the PASTEBIN_* environment overrides.
    """

    path = path or os.environ.get(CONFIG_ENV)
    cfg = AppConfig()
    if path:
        try:
            cfg = parse_config(Path(path).read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigError("unreadable", f"cannot read config {path}: {e}") from e

    overrides = {key: os.environ[env] for env, key in _ENV.items() if env in os.environ}
    return _validate(_apply(cfg, overrides))
