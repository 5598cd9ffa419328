"""Custom exception hierarchy for pylocrelay."""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for all pylocrelay errors."""


class RelayConfigError(RelayError):
    """Invalid or missing configuration."""


class RelayTransportError(RelayError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ChannelError(RelayError):
    """Push channel could not be established, or refused a topic."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class HandshakeTimeoutError(ChannelError):
    """No connection or topic acknowledgment within the handshake window.

    Never surfaced to observers: the subscription degrades to polling and
    the failure is counted in :class:`~pylocrelay.models.RelayStats`.
    """
