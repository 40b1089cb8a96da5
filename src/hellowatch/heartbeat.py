"""TTL check keep-alive loop."""

import sys
import threading
from typing import Optional, Protocol

from .config import SharedConfig
from .store import StoreError


class CheckEndpoint(Protocol):
    def pass_check(self, url: str) -> int: ...


class TTLHeartbeat:
    """Marks the service's TTL check as passing once per interval.

    The interval is read from the config once, at construction; changing it
    requires a new heartbeat. The enabled flag and check target are re-read
    on every tick, so toggling checks takes effect on the next tick.
    """

    def __init__(self, shared: SharedConfig, endpoint: CheckEndpoint,
                 interval: Optional[float] = None):
        self.shared = shared
        self.endpoint = endpoint
        if interval is None:
            interval = shared.snapshot().ttl_interval
        self.interval = interval
        self._last_ok: Optional[bool] = None

    def tick(self) -> bool:
        """Send one liveness signal if checks are enabled.

        Returns True if a signal was sent, whatever its outcome.
        """
        cfg = self.shared.snapshot()
        if not cfg.enable_checks:
            return False

        target = cfg.check_url()
        try:
            status = self.endpoint.pass_check(target)
        except StoreError as exc:
            print(f"[ERR] heartbeat: failed to update TTL check: {exc}", file=sys.stderr)
            self._last_ok = False
            return True

        ok = status == 200
        if not ok:
            print(
                f"[ERR] heartbeat: TTL check update to '{target}' returned {status}",
                file=sys.stderr,
            )
        elif self._last_ok is not True or cfg.debug_mode:
            print(f"[INFO] heartbeat: TTL check '{cfg.ttl_id}' passing", file=sys.stderr)
        self._last_ok = ok
        return True

    def run(self, stop: threading.Event) -> None:
        """Tick immediately, then once per interval until *stop* is set."""
        while not stop.is_set():
            try:
                self.tick()
            except Exception as exc:
                print(f"[ERR] heartbeat: unexpected error: {exc!r}", file=sys.stderr)
            if stop.wait(self.interval):
                break
