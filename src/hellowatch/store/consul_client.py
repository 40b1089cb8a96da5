#!/usr/bin/env python3
"""
Consul HTTP client

This module provides:
- KVEntry: one decoded element of a /v1/kv response
- QueryResult: the change index and raw body of a blocking read
- ConsulClient: thin urllib client for blocking KV reads and TTL check passes
- parse_index / decode_entries: response parsing, kept separate so the
  watcher decides when (and whether) to decode a body
"""

import base64
import http.client
import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

INDEX_HEADER = "X-Consul-Index"
MAX_INDEX = 2 ** 64 - 1


class StoreError(Exception):
    """Transport failure or unexpected status from the store."""


class InvalidIndexError(StoreError):
    """The change-index header was present but not an unsigned 64-bit integer."""


@dataclass
class KVEntry:
    """One key as returned by Consul's KV endpoint."""
    key: str
    value: Optional[str] = None  # base64, None when the key holds no data
    flags: int = 0
    lock_index: int = 0
    create_index: int = 0
    modify_index: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KVEntry':
        return cls(
            key=data.get("Key", ""),
            value=data.get("Value"),
            flags=int(data.get("Flags") or 0),
            lock_index=int(data.get("LockIndex") or 0),
            create_index=int(data.get("CreateIndex") or 0),
            modify_index=int(data.get("ModifyIndex") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "LockIndex": self.lock_index,
            "Key": self.key,
            "Flags": self.flags,
            "Value": self.value,
            "CreateIndex": self.create_index,
            "ModifyIndex": self.modify_index,
        }

    def decoded_value(self) -> str:
        """Base64-decode the value as UTF-8 text. Raises ValueError if malformed."""
        if not self.value:
            return ""
        if not isinstance(self.value, str):
            raise ValueError(f"value must be a base64 string, got {type(self.value).__name__}")
        raw = base64.b64decode(self.value, validate=True)
        return raw.decode("utf-8")


@dataclass
class QueryResult:
    """Outcome of a blocking read: the change index (if sent) and the raw body."""
    index: Optional[int]
    body: bytes = b""
    status: int = 200


def parse_index(value: Optional[str]) -> Optional[int]:
    """Parse a change-index header value.

    Returns None when the header is absent or empty and raises
    InvalidIndexError when it is not a base-10 unsigned 64-bit integer.
    """
    if value is None or value == "":
        return None
    if not (value.isascii() and value.isdigit()):
        raise InvalidIndexError(f"failed to parse {INDEX_HEADER} {value!r}")
    index = int(value)
    if index > MAX_INDEX:
        raise InvalidIndexError(f"{INDEX_HEADER} {value!r} out of range")
    return index


def decode_entries(body: bytes) -> List[KVEntry]:
    """Decode a KV response body. An empty body means no entries.

    Raises ValueError if the body is not a JSON list of objects.
    """
    if not body or not body.strip():
        return []
    data = json.loads(body.decode("utf-8"))
    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise ValueError("expected a JSON list of key objects")
    return [KVEntry.from_dict(d) for d in data]


class ConsulClient:
    """Thin HTTP client for the two store operations the service needs."""

    def __init__(self, query_timeout: float = 330, check_timeout: float = 10,
                 wait: Optional[str] = None):
        # Bypass http_proxy env vars; Consul is normally a local agent.
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
        self.query_timeout = query_timeout
        self.check_timeout = check_timeout
        self.wait = wait

    def _query_url(self, url: str, index: int) -> str:
        params = {"index": str(index)}
        if self.wait:
            params["wait"] = self.wait
        sep = "&" if "?" in url else "?"
        return f"{url}{sep}{urllib.parse.urlencode(params)}"

    def blocking_read(self, url: str, index: int) -> QueryResult:
        """Long-poll *url* for changes after *index*.

        A 404 is Consul's answer for a key that does not exist yet and is
        returned as an empty result; any other non-2xx status is a StoreError.
        """
        target = self._query_url(url, index)
        try:
            with self._opener.open(target, timeout=self.query_timeout) as resp:
                body = resp.read()
                return QueryResult(
                    index=parse_index(resp.headers.get(INDEX_HEADER)),
                    body=body,
                    status=resp.status,
                )
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                return QueryResult(
                    index=parse_index(exc.headers.get(INDEX_HEADER)),
                    body=b"",
                    status=404,
                )
            raise StoreError(f"GET '{target}' returned {exc.code}") from exc
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            reason = getattr(exc, "reason", exc)
            raise StoreError(f"failed to get '{target}': {reason}") from exc
        except ValueError as exc:
            # urllib rejects addresses without a scheme this way
            raise StoreError(f"invalid url '{target}': {exc}") from exc

    def pass_check(self, url: str) -> int:
        """Mark a TTL check as passing. Returns the HTTP status code."""
        try:
            req = urllib.request.Request(url, data=b"", method="PUT")
            with self._opener.open(req, timeout=self.check_timeout) as resp:
                return resp.status
        except urllib.error.HTTPError as exc:
            return exc.code
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            reason = getattr(exc, "reason", exc)
            raise StoreError(f"failed to put '{url}': {reason}") from exc
        except ValueError as exc:
            raise StoreError(f"invalid url '{url}': {exc}") from exc
