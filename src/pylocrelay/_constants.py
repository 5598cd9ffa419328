"""Internal constants shared across the library."""

TOPIC_PREFIX = "/topic/location/"
USER_AGENT = "pylocrelay"

LATEST_ENDPOINT = "/location/{entity_id}/latest"
TRACK_ENDPOINT = "/location/{entity_id}/track"
STATUS_ENDPOINT = "/surveyors/status"

# Reference timings observed on the dashboard.
DEFAULT_HANDSHAKE_TIMEOUT_S: float = 10.0
DEFAULT_POLL_INTERVAL_S: float = 5.0
DEFAULT_DEDUP_WINDOW: int = 64
DEFAULT_RECONNECT_INITIAL_DELAY_S: float = 5.0
DEFAULT_RECONNECT_MAX_DELAY_S: float = 60.0


def topic_for(entity_id: str, prefix: str = TOPIC_PREFIX) -> str:
    """Return the broker topic carrying updates for *entity_id*.

    *entity_id* must already be canonical.
    """
    return f"{prefix}{entity_id}"


def entity_from_topic(topic: str, prefix: str = TOPIC_PREFIX) -> str | None:
    """Inverse of :func:`topic_for`; ``None`` for foreign topics."""
    if not topic.startswith(prefix):
        return None
    tail = topic[len(prefix) :]
    return tail or None
