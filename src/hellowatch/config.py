"""Configuration loading, merging and the shared in-process config store."""

import math
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml


class ConfigError(Exception):
    """Raised when a config file cannot be read or parsed."""


@dataclass
class ServiceConfig:
    # Every field is optional: None means "not set", and is filled in from
    # default_config() (or an older record) by merged_over().
    language: Optional[str] = None
    consul_addr: Optional[str] = None
    kv_path: Optional[str] = None
    service_name: Optional[str] = None
    ttl_endpoint: Optional[str] = None
    ttl_id: Optional[str] = None
    ttl_interval: Optional[float] = None  # seconds
    enable_checks: Optional[bool] = None
    debug_mode: Optional[bool] = None
    keys_to_watch: Optional[list[str]] = None

    def merged_over(self, base: "ServiceConfig") -> "ServiceConfig":
        """Return a new record: fields set here win, the rest come from *base*."""
        values = {}
        for f in fields(ServiceConfig):
            val = getattr(self, f.name)
            if val is None:
                val = getattr(base, f.name)
            if isinstance(val, list):
                val = list(val)
            values[f.name] = val
        return ServiceConfig(**values)

    def finalize(self) -> "ServiceConfig":
        """Fill every unset field from the compiled-in defaults."""
        return self.merged_over(default_config())

    def kv_url(self, key: str) -> str:
        return f"{self.consul_addr}{self.kv_path}{key}"

    def check_url(self) -> str:
        return f"{self.consul_addr}{self.ttl_endpoint}{self.ttl_id}"


def default_config() -> ServiceConfig:
    return ServiceConfig(
        language="english",
        consul_addr="http://localhost:8500",
        kv_path="/v1/kv/service/hello/",
        service_name="hello-ttl/",
        ttl_endpoint="/v1/agent/check/pass/",
        ttl_id="hello_ttl",
        ttl_interval=5.0,
        enable_checks=True,
        debug_mode=False,
        keys_to_watch=["hello-ttl/enable_checks"],
    )


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value) -> float:
    """Convert a number of seconds or a Go-style duration ("1m30s") to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid duration {value!r}")

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    while pos < len(text):
        m = _DURATION_PART.match(text, pos)
        if m is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    return total


# Expected Python type per field, used to validate values read from a file
_FIELD_TYPES = {
    "language": str,
    "consul_addr": str,
    "kv_path": str,
    "service_name": str,
    "ttl_endpoint": str,
    "ttl_id": str,
    "enable_checks": bool,
    "debug_mode": bool,
}


def _coerce_field(name: str, value, go_durations: bool = False):
    if value is None:
        return None
    if name == "ttl_interval":
        if go_durations and isinstance(value, int) and not isinstance(value, bool):
            # JSON written for the Go services encodes time.Duration in nanoseconds
            seconds = value / 1e9
        else:
            try:
                seconds = parse_duration(value)
            except ValueError as exc:
                raise ConfigError(f"field 'ttl_interval': {exc}") from exc
        if not 0 < seconds < math.inf:
            raise ConfigError(f"field 'ttl_interval' must be positive, got {value!r}")
        return seconds
    if name == "keys_to_watch":
        if not isinstance(value, list) or not all(isinstance(k, str) for k in value):
            raise ConfigError("field 'keys_to_watch' must be a list of strings")
        return list(value)
    expected = _FIELD_TYPES[name]
    if not isinstance(value, expected):
        raise ConfigError(
            f"field '{name}' must be of type {expected.__name__}, got {type(value).__name__}"
        )
    return value


def load_config(path: str | Path) -> ServiceConfig:
    """Load a ServiceConfig from a YAML (or JSON) file.

    Fields missing from the file are left unset; unknown keys are ignored.
    In a .json file a bare integer ttl_interval is a Go duration in
    nanoseconds; anywhere else a bare number is seconds.
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"failed to open '{path}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse '{path}': {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"'{path}' must contain a mapping at the top level")

    go_durations = path.suffix.lower() == ".json"
    valid_fields = {f.name for f in fields(ServiceConfig)}
    filtered = {
        k: _coerce_field(k, v, go_durations) for k, v in data.items() if k in valid_fields
    }
    return ServiceConfig(**filtered)


def config_to_yaml(config: ServiceConfig) -> str:
    """Serialize the explicitly set fields of a ServiceConfig to YAML."""
    data: dict = {}
    for f in fields(ServiceConfig):
        val = getattr(config, f.name)
        if val is not None:
            data[f.name] = val
    return yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


# ---------------------------------------------------------------------------
# Shared config store (read by HTTP handlers, written by watchers)
# ---------------------------------------------------------------------------

class _RWLock:
    """Writer-preferring reader/writer lock."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SharedConfig:
    """Thread-safe holder of the process-wide ServiceConfig.

    All access goes through narrow accessors; each writer touches a single
    field and no I/O ever happens while the lock is held.
    """

    def __init__(self, config: Optional[ServiceConfig] = None):
        self._lock = _RWLock()
        self._config = (config or ServiceConfig()).finalize()

    def snapshot(self) -> ServiceConfig:
        with self._lock.read_locked():
            return replace(self._config, keys_to_watch=list(self._config.keys_to_watch))

    @property
    def language(self) -> str:
        with self._lock.read_locked():
            return self._config.language

    @property
    def checks_enabled(self) -> bool:
        with self._lock.read_locked():
            return self._config.enable_checks

    def set_language(self, value: str) -> None:
        with self._lock.write_locked():
            self._config.language = value

    def set_checks_enabled(self, value: bool) -> None:
        with self._lock.write_locked():
            self._config.enable_checks = value

    def reload(self, loaded: ServiceConfig) -> ServiceConfig:
        """Merge a freshly loaded record over the current one.

        Priority: fields set in *loaded*, then the in-memory values, then
        the defaults. Returns a snapshot of the result.
        """
        with self._lock.write_locked():
            self._config = loaded.merged_over(self._config).finalize()
            return replace(self._config, keys_to_watch=list(self._config.keys_to_watch))
