"""CLI entry point for hellowatch."""

import argparse
import signal
import sys
import threading

from .config import (
    ConfigError,
    ServiceConfig,
    SharedConfig,
    config_to_yaml,
    load_config,
)
from .launcher import ServiceRunner
from .server import make_server
from .store import ConsulClient


def _load_or_default(cfg_file: str) -> ServiceConfig:
    """Load the config file, falling back to an empty record on failure."""
    try:
        return load_config(cfg_file)
    except ConfigError as exc:
        print(
            f"[WARN] failed to load config from file '{cfg_file}', using default. err: {exc}",
            file=sys.stderr,
        )
        return ServiceConfig()


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address '{addr}', expected HOST:PORT")
    return host or "0.0.0.0", int(port)


def _reload_config(shared: SharedConfig, cfg_file: str) -> ServiceConfig:
    """Load *cfg_file* and merge it over the live config."""
    result = shared.reload(_load_or_default(cfg_file))
    print("[INFO] config reloaded", file=sys.stderr)
    return result


def _install_reload(shared: SharedConfig, cfg_file: str) -> None:
    """Reload the config file on SIGHUP."""
    if not hasattr(signal, "SIGHUP"):
        return

    def on_hup(signum, frame):
        print(f"[INFO] captured signal: {signal.Signals(signum).name}. reloading config...",
              file=sys.stderr)
        # Run outside the signal handler so it never waits on the config lock here
        threading.Thread(
            target=_reload_config, args=(shared, cfg_file), name="config-reload", daemon=True,
        ).start()

    signal.signal(signal.SIGHUP, on_hup)


def cmd_serve(args) -> None:
    """Start the watchers, the TTL heartbeat and the HTTP server."""
    print("[INFO] Starting server...", file=sys.stderr)

    try:
        host, port = _split_addr(args.addr)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    shared = SharedConfig(_load_or_default(args.cfg_file))

    try:
        server = make_server(shared, host, port)
    except OSError as exc:
        print(f"Error: failed to listen on {args.addr}: {exc}", file=sys.stderr)
        sys.exit(1)

    store = ConsulClient(wait=args.wait)
    runner = ServiceRunner(shared, store, run_ttl=not args.no_ttl)
    runner.start()

    _install_reload(shared, args.cfg_file)
    signal.signal(
        signal.SIGTERM,
        lambda signum, frame: threading.Thread(target=server.shutdown, daemon=True).start(),
    )

    print(f"[INFO] Hello service listening on {args.addr}", file=sys.stderr)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        runner.stop()
        print("[INFO] Stopped.", file=sys.stderr)


def cmd_config(args) -> None:
    """Print the effective configuration (file merged over defaults)."""
    config = _load_or_default(args.cfg_file).finalize()
    print(config_to_yaml(config), end="")


def _add_cfg_file_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cfg-file", type=str, dest="cfg_file", default="config.yaml",
        help="Path to YAML or JSON config file (default: config.yaml)",
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="hellowatch",
        description="Hello service with Consul KV watches and a TTL health check",
    )
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the hello service")
    serve_parser.add_argument(
        "--addr", type=str, default="localhost:8080",
        help="Hello service address (default: localhost:8080)",
    )
    _add_cfg_file_arg(serve_parser)
    serve_parser.add_argument(
        "--no-ttl", action="store_true", dest="no_ttl",
        help="Do not run the TTL check keep-alive (HTTP check only)",
    )
    serve_parser.add_argument(
        "--wait", type=str, default=None,
        help="Blocking query wait time passed to Consul, e.g. 30s (default: server default)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # config
    config_parser = subparsers.add_parser(
        "config", help="Print the effective configuration as YAML",
    )
    _add_cfg_file_arg(config_parser)
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)
