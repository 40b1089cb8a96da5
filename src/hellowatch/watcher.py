"""Blocking-query watcher: long-polls one key and applies it to SharedConfig.

See https://www.consul.io/api/features/blocking.html#implementation-details
for the index handling rules followed here.
"""

import sys
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Union

from .config import SharedConfig
from .ratelimit import TokenBucket
from .store import QueryResult, StoreError, decode_entries

LIMITER_RATE = 0.1
LIMITER_BURST = 2

LANGUAGE_KEY = "language"
ENABLE_CHECKS_SUFFIX = "enable_checks"


class KVStore(Protocol):
    def blocking_read(self, url: str, index: int) -> QueryResult: ...


_TRUE_STRINGS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_STRINGS = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(value: str) -> bool:
    """Parse a boolean the way Go's strconv.ParseBool does."""
    if value in _TRUE_STRINGS:
        return True
    if value in _FALSE_STRINGS:
        return False
    raise ValueError(f"failed to parse enable_checks bool '{value}'")


# ---------------------------------------------------------------------------
# Update variants and the key -> update dispatch table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LanguageUpdate:
    value: str

    @classmethod
    def parse(cls, raw: str) -> 'LanguageUpdate':
        return cls(raw)

    def apply(self, shared: SharedConfig) -> None:
        shared.set_language(self.value)


@dataclass(frozen=True)
class ChecksEnabledUpdate:
    value: bool

    @classmethod
    def parse(cls, raw: str) -> 'ChecksEnabledUpdate':
        return cls(parse_bool(raw))

    def apply(self, shared: SharedConfig) -> None:
        shared.set_checks_enabled(self.value)


Update = Union[LanguageUpdate, ChecksEnabledUpdate]
DispatchTable = Dict[str, Callable[[str], Update]]


def build_dispatch_table(service_name: str) -> DispatchTable:
    """Map watched key names to the parser of the update they carry."""
    return {
        LANGUAGE_KEY: LanguageUpdate.parse,
        f"{service_name}{ENABLE_CHECKS_SUFFIX}": ChecksEnabledUpdate.parse,
    }


# ---------------------------------------------------------------------------
# Watcher
# ---------------------------------------------------------------------------

class WatchOutcome(Enum):
    """Result of a single watcher iteration."""
    APPLIED = "applied"
    IGNORED = "ignored"      # value decoded but no handler for the key
    EMPTY = "empty"          # key does not exist yet
    RESET = "reset"          # index went to 0 or backwards
    RETRY = "retry"          # transient failure, nothing applied
    CANCELLED = "cancelled"


@dataclass
class WatchCursor:
    index: int = 1
    last_index: int = 0

    def reset(self) -> None:
        self.index = 1
        self.last_index = 1


class BlockingWatcher:
    """Watches one key with Consul blocking queries.

    Iterations are strictly sequential. Every failure is logged and the loop
    carries on; only the stop event ends run().
    """

    def __init__(
        self,
        key: str,
        shared: SharedConfig,
        store: KVStore,
        limiter: Optional[TokenBucket] = None,
        dispatch: Optional[DispatchTable] = None,
    ):
        self.key = key
        self.shared = shared
        self.store = store
        self.limiter = limiter or TokenBucket(LIMITER_RATE, LIMITER_BURST)
        if dispatch is None:
            dispatch = build_dispatch_table(shared.snapshot().service_name)
        self.dispatch = dispatch
        self.cursor = WatchCursor()

    def _log(self, level: str, msg: str) -> None:
        print(f"[{level}] watch '{self.key}': {msg}", file=sys.stderr)

    def poll_once(self, stop: Optional[threading.Event] = None) -> WatchOutcome:
        if not self.limiter.wait(stop):
            if stop is not None and stop.is_set():
                return WatchOutcome.CANCELLED
            self._log("ERR", "failed to wait for limiter")
            return WatchOutcome.RETRY

        cfg = self.shared.snapshot()
        url = cfg.kv_url(self.key)
        try:
            result = self.store.blocking_read(url, self.cursor.index)
        except StoreError as exc:
            # Includes InvalidIndexError: the cursor is left untouched
            self._log("ERR", str(exc))
            return WatchOutcome.RETRY

        if stop is not None and stop.is_set():
            return WatchOutcome.CANCELLED

        candidate = self.cursor.index if result.index is None else result.index

        # The store lost its history (restart, snapshot restore): start over
        # from index 1 and do not trust this response's payload.
        if candidate == 0 or candidate < self.cursor.last_index:
            if cfg.debug_mode:
                self._log("DEBUG", f"index reset (got {candidate}, last {self.cursor.last_index})")
            self.cursor.reset()
            return WatchOutcome.RESET

        self.cursor.index = candidate
        self.cursor.last_index = candidate

        try:
            entries = decode_entries(result.body)
        except (ValueError, TypeError) as exc:
            self._log("ERR", f"failed to decode response: {exc}")
            return WatchOutcome.RETRY

        if not entries:
            self._log("WARN", "empty response, key does not exist")
            return WatchOutcome.EMPTY

        # Not recursing on a prefix, so there is at most one entry
        entry = entries[0]
        try:
            value = entry.decoded_value()
        except ValueError:
            self._log("ERR", f"failed to decode value: '{entry.value}'")
            return WatchOutcome.RETRY

        parser = self.dispatch.get(self.key)
        if parser is None:
            if cfg.debug_mode:
                self._log("DEBUG", f"no handler, ignoring value {value!r}")
            return WatchOutcome.IGNORED

        try:
            update = parser(value)
        except ValueError as exc:
            self._log("ERR", str(exc))
            return WatchOutcome.RETRY

        update.apply(self.shared)
        self._log("INFO", f"updated to {value}")
        return WatchOutcome.APPLIED

    def run(self, stop: threading.Event) -> None:
        """Poll until *stop* is set. No error ends the loop."""
        while not stop.is_set():
            try:
                self.poll_once(stop)
            except Exception as exc:
                self._log("ERR", f"unexpected error: {exc!r}")
