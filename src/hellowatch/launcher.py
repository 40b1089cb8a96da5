"""Core orchestration: start the watchers and the heartbeat, stop them together."""

import sys
import threading
from typing import Callable, Optional

from .config import SharedConfig
from .heartbeat import TTLHeartbeat
from .ratelimit import TokenBucket
from .watcher import LIMITER_BURST, LIMITER_RATE, BlockingWatcher


class ServiceRunner:
    """Owns one thread per watched key plus one for the TTL heartbeat.

    All threads share a single stop event. Threads are daemons so a long
    poll still in flight at shutdown never keeps the process alive.
    """

    def __init__(
        self,
        shared: SharedConfig,
        store,
        run_ttl: bool = True,
        limiter_factory: Optional[Callable[[], TokenBucket]] = None,
    ):
        self.shared = shared
        self.store = store
        self.stop_event = threading.Event()
        self._limiter_factory = limiter_factory or (lambda: TokenBucket(LIMITER_RATE, LIMITER_BURST))
        self._threads: list[threading.Thread] = []

        cfg = shared.snapshot()
        self.watchers = [
            BlockingWatcher(key, shared, store, limiter=self._limiter_factory())
            for key in cfg.keys_to_watch
        ]
        self.heartbeat = TTLHeartbeat(shared, store) if run_ttl else None

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("runner already started")

        if self.heartbeat is not None:
            print("[INFO] Running TTL check keep-alive", file=sys.stderr)
            self._spawn("ttl-heartbeat", self.heartbeat.run)

        for watcher in self.watchers:
            print(f"[INFO] Running watch for key '{watcher.key}'", file=sys.stderr)
            self._spawn(f"watch-{watcher.key}", watcher.run)

    def _spawn(self, name: str, target: Callable[[threading.Event], None]) -> None:
        thread = threading.Thread(target=target, args=(self.stop_event,), name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def stop(self, timeout: Optional[float] = 5.0) -> list[str]:
        """Signal every task to stop and join them.

        Returns the names of threads still alive after *timeout* (typically
        watchers blocked in a long poll).
        """
        self.stop_event.set()
        stragglers = []
        for thread in self._threads:
            thread.join(timeout)
            if thread.is_alive():
                stragglers.append(thread.name)
        if stragglers:
            print(
                f"[WARN] still waiting on in-flight requests: {', '.join(stragglers)}",
                file=sys.stderr,
            )
        return stragglers
