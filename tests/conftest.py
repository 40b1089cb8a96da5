import base64
import json
import threading

import pytest

from hellowatch.config import ServiceConfig, SharedConfig
from hellowatch.ratelimit import TokenBucket
from hellowatch.store import QueryResult


def kv_body(key: str, value: str | None, modify_index: int = 1) -> bytes:
    """Build a Consul-style KV response body for a single key."""
    encoded = base64.b64encode(value.encode()).decode() if value is not None else None
    return json.dumps([{
        "LockIndex": 0,
        "Key": key,
        "Flags": 0,
        "Value": encoded,
        "CreateIndex": 1,
        "ModifyIndex": modify_index,
    }]).encode()


class FakeStore:
    """Scripted store: replays responses (or raises exceptions) in order.

    The first read past the end of the script sets the stop event, so a
    watcher's run() processes every scripted response and then exits.
    """

    def __init__(self, responses=(), stop: threading.Event | None = None):
        self.responses = list(responses)
        self.stop = stop or threading.Event()
        self.reads: list[tuple[str, int]] = []
        self.checks: list[str] = []
        self.check_statuses: list = []

    def blocking_read(self, url: str, index: int) -> QueryResult:
        self.reads.append((url, index))
        if not self.responses:
            self.stop.set()
            return QueryResult(index=index, body=b"[]")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def pass_check(self, url: str) -> int:
        self.checks.append(url)
        if self.check_statuses:
            item = self.check_statuses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return 200


@pytest.fixture
def shared():
    return SharedConfig(ServiceConfig(keys_to_watch=["language", "hello-ttl/enable_checks"]))


@pytest.fixture
def fast_limiter():
    return TokenBucket(rate=1_000_000, burst=1_000)
