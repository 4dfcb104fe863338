"""In-memory application configuration.

Keys are dot-separated strings (``service.session.cookie.key``), values are
strings. The test engine installs a ``MapConfig`` in the application
environment before any module runs.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from appharness.errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _normalize_key(key: str) -> str:
    value = str(key or "").strip().strip(".")
    if not value or any(not part.strip() for part in value.split(".")):
        raise ConfigError(f"invalid config key: {key!r}")
    return value


@dataclass(slots=True)
class MapConfig:
    _values: dict[str, str]

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values = {}
        for key, value in (values or {}).items():
            self.put(key, value)

    def put(self, key: str, value: Any) -> MapConfig:
        self._values[_normalize_key(key)] = str(value)
        return self

    def has(self, key: str) -> bool:
        return _normalize_key(key) in self._values

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._values.get(_normalize_key(key), default)

    def get_string(self, key: str) -> str:
        name = _normalize_key(key)
        if name not in self._values:
            raise ConfigError(f"missing config key: {name}")
        return self._values[name]

    def get_list(self, key: str) -> list[str]:
        return [v.strip() for v in self.get_string(key).split(",") if v.strip()]

    def get_int(self, key: str, default: int | None = None) -> int:
        raw = self.get(key)
        if raw is None:
            if default is None:
                raise ConfigError(f"missing config key: {_normalize_key(key)}")
            return default
        try:
            return int(raw.strip())
        except ValueError:
            raise ConfigError(f"config key {_normalize_key(key)} is not an integer: {raw!r}") from None

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get(key)
        if raw is None:
            return default
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ConfigError(f"config key {_normalize_key(key)} is not a boolean: {raw!r}")

    def keys(self) -> list[str]:
        return sorted(self._values)

    def sub(self, prefix: str) -> MapConfig:
        base = _normalize_key(prefix) + "."
        return MapConfig({k[len(base) :]: v for k, v in self._values.items() if k.startswith(base)})

    def to_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._values)


def as_config(value: MapConfig | Mapping[str, Any] | None) -> MapConfig:
    if isinstance(value, MapConfig):
        return value
    return MapConfig(value)
