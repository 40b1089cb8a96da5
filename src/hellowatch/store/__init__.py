"""
Consul key/value and agent client

This package provides:
1. ConsulClient — urllib-based client for blocking KV reads and TTL check passes
2. KVEntry / QueryResult — decoded response shapes
3. decode_entries / parse_index — response parsing helpers
"""

from .consul_client import (
    ConsulClient,
    InvalidIndexError,
    KVEntry,
    QueryResult,
    StoreError,
    decode_entries,
    parse_index,
)

__all__ = [
    'ConsulClient',
    'InvalidIndexError',
    'KVEntry',
    'QueryResult',
    'StoreError',
    'decode_entries',
    'parse_index',
]
