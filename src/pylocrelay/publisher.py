"""Publisher: accepted position writes -> per-entity topic events."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pylocrelay._constants import TOPIC_PREFIX, topic_for
from pylocrelay._redact import redact_for_log
from pylocrelay.broker import Broker
from pylocrelay.models.position import PositionUpdate

_logger = logging.getLogger(__name__)


class Publisher:
    """Forward accepted fixes to the topic of their entity.

    ``publish`` never raises. The relay is not a durable log: with no
    subscriber on a topic the broker simply drops the message, and a
    broker failure is logged and counted in :attr:`failures`.
    """

    def __init__(self, broker: Broker, *, topic_prefix: str = TOPIC_PREFIX) -> None:
        self._broker = broker
        self._topic_prefix = topic_prefix
        self.published = 0
        self.failures = 0

    def publish(self, update: PositionUpdate) -> None:
        """Hand *update* to the broker on ``/topic/location/{entity_id}``."""
        topic = "<unknown>"
        try:
            topic = topic_for(update.entity_id, self._topic_prefix)
            payload = json.dumps(update.to_wire(), separators=(",", ":")).encode("utf-8")
            self._broker.publish(topic, payload)
        except Exception:
            self.failures += 1
            _logger.debug("Publish failed topic=%s", topic, exc_info=True)
            return
        self.published += 1

    def publish_message(self, message: Mapping[str, Any]) -> PositionUpdate | None:
        """Validate a raw live-location message and publish it.

        The message is the mobile app's upload body
        (``surveyorId``/``latitude``/``longitude``/``timestamp``).
        Returns the published update, or ``None`` when the message is
        invalid.
        """
        try:
            update = PositionUpdate.model_validate(message)
        except ValidationError:
            self.failures += 1
            _logger.debug("Rejected live-location message %s", redact_for_log(message))
            return None
        self.publish(update)
        return update
