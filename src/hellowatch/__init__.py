"""hellowatch: a hello service driven by Consul KV watches and a TTL check."""

__version__ = '0.1.0'
