"""Tests for configuration loading."""

import shipyard.persistence as persistence
from shipyard.channels import NullChannel, get_channel
from shipyard.channels.redis import RedisChannel
from shipyard.config import load_config
from shipyard.contracts import StepType
from shipyard.persistence import InMemoryStateStore, SQLiteStateStore, get_store
from shipyard.persistence.store import RecordKind


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "shipyard.yaml"
    config_path.write_text(
        """
channel:
  backend: redis
  redis:
    host: testhost
    port: 1234
timeouts:
  steps:
    demo: 120
ttl:
  approval_gate: 600
review_steps: [docs]
"""
    )
    monkeypatch.setenv("SHIPYARD_CONFIG", str(config_path))

    config = load_config()
    assert config.channel.backend == "redis"
    assert config.channel.redis.host == "testhost"
    assert config.channel.redis.port == 1234
    assert config.timeouts.for_step(StepType.DEMO) == 120
    assert config.timeouts.for_step("unknown") == 60
    assert config.ttl.approval_gate == 600
    assert config.review_steps == [StepType.DOCS]


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("SHIPYARD_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("SHIPYARD_STORE_URL", raising=False)
    monkeypatch.delenv("SHIPYARD_CHANNEL", raising=False)

    config = load_config()
    assert config.store.url is None
    assert config.timeouts.for_step(StepType.ANALYZE) == 30
    assert config.timeouts.for_step(StepType.TERMINAL) == 180
    assert config.timeouts.pipeline == 180
    assert config.ttl.workflow == 86400
    assert config.review_steps == []


def test_get_channel_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "shipyard.yaml"
    config_path.write_text(
        """
channel:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("SHIPYARD_CONFIG", str(config_path))
    monkeypatch.delenv("SHIPYARD_CHANNEL", raising=False)

    channel = get_channel()
    assert isinstance(channel, RedisChannel)
    assert channel.host == "confighost"
    assert channel.port == 6380

    monkeypatch.setenv("SHIPYARD_CHANNEL", "null")
    assert isinstance(get_channel(), NullChannel)


def test_get_store_selects_backend_from_url(tmp_path, monkeypatch):
    monkeypatch.setenv("SHIPYARD_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("SHIPYARD_STORE_URL", f"sqlite://{tmp_path / 'state.db'}")
    monkeypatch.setattr(persistence, "_store_instance", None)

    store = get_store()
    assert isinstance(store, SQLiteStateStore)
    assert store.ttl_for(RecordKind.APPROVAL_GATE) == 3600
    # cached until a url or config is given explicitly
    assert get_store() is store

    monkeypatch.delenv("SHIPYARD_STORE_URL")
    assert isinstance(get_store(config=load_config()), InMemoryStateStore)
