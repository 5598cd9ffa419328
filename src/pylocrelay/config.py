"""Relay configuration for pylocrelay."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pylocrelay._constants import (
    DEFAULT_DEDUP_WINDOW,
    DEFAULT_HANDSHAKE_TIMEOUT_S,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_RECONNECT_INITIAL_DELAY_S,
    DEFAULT_RECONNECT_MAX_DELAY_S,
    TOPIC_PREFIX,
)
from pylocrelay.exceptions import RelayConfigError

_BROKER_TRANSPORTS = frozenset({"tcp", "websockets"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Relay configuration.

    Parameters
    ----------
    base_url : str
        Position Store API base URL (``/location/...`` paths are appended).
    broker_host : str
        Message broker hostname.
    broker_port : int
        Message broker port.
    broker_transport : str
        ``"tcp"`` or ``"websockets"``.
    broker_ws_path : str
        HTTP path of the broker's WebSocket endpoint.
    broker_tls : bool
        Wrap the broker connection in TLS.
    broker_username : str or None
        Broker credentials, if the broker requires them.
    broker_password : str or None
        Broker credentials, if the broker requires them.
    broker_keepalive : int
        Broker keepalive in seconds.
    topic_prefix : str
        Prefix of per-entity topics; the canonical entity id is appended.
    handshake_timeout : float
        Seconds allowed for connection + topic acknowledgment before a
        subscription falls back to polling.
    poll_interval : float
        Seconds between "latest position" queries while polling.
    dedup_window : int
        Number of recent ``(entity_id, observed_at)`` keys remembered per
        subscription.
    promote_to_push : bool
        Retry the push channel while polling and promote back to live.
    reconnect_initial_delay : float
        First backoff delay for promotion attempts.
    reconnect_max_delay : float
        Upper bound of the promotion backoff.
    http_timeout : float
        Total timeout for one Position Store HTTP request.
    """

    base_url: str = "http://localhost:8080/api"
    broker_host: str = "localhost"
    broker_port: int = 1883
    broker_transport: str = "tcp"
    broker_ws_path: str = "/ws/location"
    broker_tls: bool = False
    broker_username: str | None = None
    broker_password: str | None = None
    broker_keepalive: int = 60
    topic_prefix: str = TOPIC_PREFIX
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT_S
    poll_interval: float = DEFAULT_POLL_INTERVAL_S
    dedup_window: int = DEFAULT_DEDUP_WINDOW
    promote_to_push: bool = True
    reconnect_initial_delay: float = DEFAULT_RECONNECT_INITIAL_DELAY_S
    reconnect_max_delay: float = DEFAULT_RECONNECT_MAX_DELAY_S
    http_timeout: float = 10.0

    def __post_init__(self) -> None:
        for name in ("handshake_timeout", "poll_interval", "reconnect_initial_delay", "http_timeout"):
            if getattr(self, name) <= 0:
                raise RelayConfigError(f"{name} must be positive, got {getattr(self, name)!r}")
        if self.reconnect_max_delay < self.reconnect_initial_delay:
            raise RelayConfigError("reconnect_max_delay must be >= reconnect_initial_delay")
        if self.dedup_window < 1:
            raise RelayConfigError(f"dedup_window must be at least 1, got {self.dedup_window!r}")
        if self.broker_transport not in _BROKER_TRANSPORTS:
            raise RelayConfigError(f"broker_transport must be one of {sorted(_BROKER_TRANSPORTS)}")

    @classmethod
    def from_env(cls, **overrides: Any) -> RelayConfig:
        """Create configuration from ``RELAY_*`` environment variables.

        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RelayConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "RELAY_BASE_URL": "base_url",
            "RELAY_BROKER_HOST": "broker_host",
            "RELAY_BROKER_TRANSPORT": "broker_transport",
            "RELAY_BROKER_WS_PATH": "broker_ws_path",
            "RELAY_BROKER_USERNAME": "broker_username",
            "RELAY_BROKER_PASSWORD": "broker_password",
            "RELAY_TOPIC_PREFIX": "topic_prefix",
        }
        _ENV_INT_MAP = {
            "RELAY_BROKER_PORT": "broker_port",
            "RELAY_BROKER_KEEPALIVE": "broker_keepalive",
            "RELAY_DEDUP_WINDOW": "dedup_window",
        }
        _ENV_FLOAT_MAP = {
            "RELAY_HANDSHAKE_TIMEOUT": "handshake_timeout",
            "RELAY_POLL_INTERVAL": "poll_interval",
            "RELAY_RECONNECT_INITIAL_DELAY": "reconnect_initial_delay",
            "RELAY_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "RELAY_HTTP_TIMEOUT": "http_timeout",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        try:
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise RelayConfigError(f"Invalid numeric environment value: {exc}") from exc

        if "broker_tls" not in overrides:
            config_kwargs["broker_tls"] = _env_bool(env.get("RELAY_BROKER_TLS"), False)
        if "promote_to_push" not in overrides:
            config_kwargs["promote_to_push"] = _env_bool(env.get("RELAY_PROMOTE_TO_PUSH"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
