from __future__ import annotations

import pytest

from pylocrelay.config import RelayConfig
from pylocrelay.exceptions import RelayConfigError


def test_defaults_match_dashboard_timings() -> None:
    config = RelayConfig()

    assert config.handshake_timeout == 10.0
    assert config.poll_interval == 5.0
    assert config.topic_prefix == "/topic/location/"
    assert config.promote_to_push is True
    assert config.reconnect_initial_delay <= config.reconnect_max_delay


@pytest.mark.parametrize(
    "overrides",
    [
        {"handshake_timeout": 0},
        {"poll_interval": -1.0},
        {"http_timeout": 0},
        {"dedup_window": 0},
        {"reconnect_initial_delay": 10.0, "reconnect_max_delay": 5.0},
        {"broker_transport": "udp"},
    ],
)
def test_invalid_values_raise_config_error(overrides: dict[str, object]) -> None:
    with pytest.raises(RelayConfigError):
        RelayConfig(**overrides)  # type: ignore[arg-type]


def test_from_env_reads_relay_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_BASE_URL", "https://survey.example.com/api")
    monkeypatch.setenv("RELAY_BROKER_HOST", "broker.example.com")
    monkeypatch.setenv("RELAY_BROKER_PORT", "8883")
    monkeypatch.setenv("RELAY_BROKER_TRANSPORT", "websockets")
    monkeypatch.setenv("RELAY_BROKER_TLS", "yes")
    monkeypatch.setenv("RELAY_POLL_INTERVAL", "2.5")
    monkeypatch.setenv("RELAY_PROMOTE_TO_PUSH", "off")

    config = RelayConfig.from_env()

    assert config.base_url == "https://survey.example.com/api"
    assert config.broker_host == "broker.example.com"
    assert config.broker_port == 8883
    assert config.broker_transport == "websockets"
    assert config.broker_tls is True
    assert config.poll_interval == 2.5
    assert config.promote_to_push is False


def test_from_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_HANDSHAKE_TIMEOUT", "3")
    monkeypatch.setenv("RELAY_BROKER_HOST", "env-host")

    config = RelayConfig.from_env(handshake_timeout=1.0, broker_host="explicit-host")

    assert config.handshake_timeout == 1.0
    assert config.broker_host == "explicit-host"


def test_from_env_rejects_non_numeric_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_DEDUP_WINDOW", "lots")

    with pytest.raises(RelayConfigError):
        RelayConfig.from_env()


def test_from_env_unrecognized_bool_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_BROKER_TLS", "maybe")

    assert RelayConfig.from_env().broker_tls is False
