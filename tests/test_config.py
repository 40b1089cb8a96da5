import json
import random
import threading

import pytest

from hellowatch.config import (
    ConfigError,
    ServiceConfig,
    SharedConfig,
    _RWLock,
    config_to_yaml,
    default_config,
    load_config,
    parse_duration,
)


def test_finalize_fills_every_field():
    cfg = ServiceConfig().finalize()
    assert cfg == default_config()
    assert cfg.ttl_interval == 5.0
    assert cfg.keys_to_watch == ["hello-ttl/enable_checks"]


def test_merged_over_prefers_set_fields():
    top = ServiceConfig(language="french", enable_checks=False)
    base = ServiceConfig(language="spanish", debug_mode=True, enable_checks=True)
    merged = top.merged_over(base)
    assert merged.language == "french"
    assert merged.enable_checks is False
    assert merged.debug_mode is True
    assert merged.consul_addr is None


def test_merged_over_does_not_alias_lists():
    base = ServiceConfig(keys_to_watch=["a"])
    merged = ServiceConfig().merged_over(base)
    merged.keys_to_watch.append("b")
    assert base.keys_to_watch == ["a"]


def test_urls():
    cfg = ServiceConfig().finalize()
    assert cfg.kv_url("language") == "http://localhost:8500/v1/kv/service/hello/language"
    assert cfg.check_url() == "http://localhost:8500/v1/agent/check/pass/hello_ttl"


@pytest.mark.parametrize("raw,expected", [
    (5, 5.0),
    (2.5, 2.5),
    ("10", 10.0),
    ("5s", 5.0),
    ("250ms", 0.25),
    ("1m30s", 90.0),
    ("1h", 3600.0),
    ("1.5s", 1.5),
])
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", "5x", "s", True, None, [1]])
def test_parse_duration_rejects(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_load_partial_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("language: french\nttl_interval: 2s\nunknown_key: 1\n")
    cfg = load_config(path)
    assert cfg.language == "french"
    assert cfg.ttl_interval == 2.0
    assert cfg.consul_addr is None
    assert cfg.finalize().consul_addr == "http://localhost:8500"


def test_load_json_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "language": "spanish",
        "enable_checks": False,
        "keys_to_watch": ["language"],
    }))
    cfg = load_config(path)
    assert cfg.language == "spanish"
    assert cfg.enable_checks is False
    assert cfg.keys_to_watch == ["language"]


def test_json_integer_interval_is_nanoseconds(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"ttl_interval": 5_000_000_000}))
    assert load_config(path).ttl_interval == 5.0

    path.write_text(json.dumps({"ttl_interval": "1m30s"}))
    assert load_config(path).ttl_interval == 90.0


def test_yaml_integer_interval_is_seconds(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("ttl_interval: 5\n")
    assert load_config(path).ttl_interval == 5.0


def test_json_zero_interval_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"ttl_interval": 0}))
    with pytest.raises(ConfigError, match="positive"):
        load_config(path)


def test_load_empty_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == ServiceConfig()


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="failed to open"):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize("content", [
    "- a\n- b\n",
    "language: [1, 2]\n",
    "enable_checks: maybe\n",
    "keys_to_watch: language\n",
    "ttl_interval: soon\n",
    "ttl_interval: 0\n",
    "ttl_interval: -5\n",
    "ttl_interval: 0s\n",
    "ttl_interval: -1s\n",
    "ttl_interval: .inf\n",
    "ttl_interval: .nan\n",
    "language: 'unterminated\n",
])
def test_load_rejects_bad_content(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)


def test_round_trip_through_file(tmp_path):
    original = ServiceConfig(
        language="portuguese",
        ttl_interval=1.5,
        enable_checks=False,
        keys_to_watch=["language", "svc/enable_checks"],
    )
    path = tmp_path / "saved.yaml"
    path.write_text(config_to_yaml(original))

    reloaded = load_config(path)
    assert reloaded == original

    final = reloaded.finalize()
    defaults = default_config()
    assert final.language == "portuguese"
    assert final.ttl_interval == 1.5
    assert final.enable_checks is False
    assert final.keys_to_watch == ["language", "svc/enable_checks"]
    assert final.consul_addr == defaults.consul_addr
    assert final.kv_path == defaults.kv_path
    assert final.service_name == defaults.service_name
    assert final.ttl_endpoint == defaults.ttl_endpoint
    assert final.ttl_id == defaults.ttl_id
    assert final.debug_mode == defaults.debug_mode


def test_config_to_yaml_skips_unset_fields():
    text = config_to_yaml(ServiceConfig(language="french"))
    assert text.strip() == "language: french"


# ---------------------------------------------------------------------------
# SharedConfig
# ---------------------------------------------------------------------------

def test_shared_config_starts_finalized():
    shared = SharedConfig()
    assert shared.snapshot() == default_config()


def test_set_language_visible_in_snapshot():
    shared = SharedConfig()
    shared.set_language("french")
    assert shared.snapshot().language == "french"
    assert shared.language == "french"


def test_set_checks_enabled():
    shared = SharedConfig()
    shared.set_checks_enabled(False)
    assert shared.checks_enabled is False
    assert shared.snapshot().enable_checks is False


def test_snapshot_is_a_copy():
    shared = SharedConfig()
    snap = shared.snapshot()
    snap.language = "spanish"
    snap.keys_to_watch.append("other")
    assert shared.language == "english"
    assert shared.snapshot().keys_to_watch == ["hello-ttl/enable_checks"]


def test_reload_priority():
    shared = SharedConfig(ServiceConfig(debug_mode=True))
    shared.set_language("french")

    result = shared.reload(ServiceConfig(ttl_interval=9.0))
    # in-memory values survive a reload that does not set them
    assert result.language == "french"
    assert result.debug_mode is True
    assert result.ttl_interval == 9.0

    shared.reload(ServiceConfig(language="spanish"))
    assert shared.language == "spanish"
    assert shared.snapshot().ttl_interval == 9.0


def test_rwlock_allows_concurrent_readers():
    lock = _RWLock()
    barrier = threading.Barrier(2, timeout=5)
    results = []

    def reader():
        with lock.read_locked():
            # Both readers must be inside at the same time to pass the barrier
            barrier.wait()
            results.append(True)

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)
    assert results == [True, True]


def test_rwlock_writer_excludes_readers():
    lock = _RWLock()
    inside = threading.Event()
    release = threading.Event()
    read_done = threading.Event()

    def writer():
        with lock.write_locked():
            inside.set()
            release.wait(5)

    def reader():
        with lock.read_locked():
            read_done.set()

    w = threading.Thread(target=writer)
    w.start()
    assert inside.wait(5)
    r = threading.Thread(target=reader)
    r.start()
    assert not read_done.wait(0.1)
    release.set()
    assert read_done.wait(5)
    w.join(5)
    r.join(5)


def test_concurrent_readers_and_writers_never_see_foreign_values():
    languages = ["english", "french", "portuguese", "spanish"]
    shared = SharedConfig()
    stop = threading.Event()
    errors = []

    def writer(seed):
        rng = random.Random(seed)
        for _ in range(2000):
            shared.set_language(rng.choice(languages))
            shared.set_checks_enabled(rng.random() < 0.5)

    def reader():
        while not stop.is_set():
            snap = shared.snapshot()
            if snap.language not in languages:
                errors.append(("language", snap.language))
            if snap.enable_checks not in (True, False):
                errors.append(("enable_checks", snap.enable_checks))
            if shared.language not in languages:
                errors.append(("language", shared.language))
            if snap.consul_addr != "http://localhost:8500":
                errors.append(("consul_addr", snap.consul_addr))

    writers = [threading.Thread(target=writer, args=(i,)) for i in range(4)]
    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers + writers:
        t.start()
    for t in writers:
        t.join(30)
    stop.set()
    for t in readers:
        t.join(30)

    assert errors == []
    assert shared.language in languages
