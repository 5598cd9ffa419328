from __future__ import annotations

import json
from dataclasses import dataclass, field

from pylocrelay.broker import LocalBroker
from pylocrelay.models.position import PositionUpdate
from pylocrelay.publisher import Publisher


@dataclass
class RecordingBroker:
    messages: list[tuple[str, bytes]] = field(default_factory=list)
    fail: bool = False

    def publish(self, topic: str, payload: bytes) -> None:
        if self.fail:
            raise ConnectionError("broker down")
        self.messages.append((topic, payload))


def _update(entity_id: str = "SUR009") -> PositionUpdate:
    return PositionUpdate(entity_id=entity_id, latitude=12.97, longitude=77.59, observed_at="2024-06-01T10:00:00Z")


def test_publish_routes_to_entity_topic() -> None:
    broker = RecordingBroker()
    publisher = Publisher(broker)

    publisher.publish(_update("sur009"))

    assert len(broker.messages) == 1
    topic, payload = broker.messages[0]
    assert topic == "/topic/location/SUR009"
    assert json.loads(payload) == {
        "entityId": "SUR009",
        "latitude": 12.97,
        "longitude": 77.59,
        "timestamp": "2024-06-01T10:00:00Z",
    }
    assert publisher.published == 1


def test_publish_honors_custom_prefix() -> None:
    broker = RecordingBroker()

    Publisher(broker, topic_prefix="fleet/location/").publish(_update())

    assert broker.messages[0][0] == "fleet/location/SUR009"


def test_publish_failure_is_counted_not_raised() -> None:
    publisher = Publisher(RecordingBroker(fail=True))

    publisher.publish(_update())

    assert publisher.published == 0
    assert publisher.failures == 1


def test_publish_without_subscribers_is_dropped() -> None:
    broker = LocalBroker()
    publisher = Publisher(broker)

    publisher.publish(_update())

    assert publisher.published == 1
    assert broker.subscriber_count("/topic/location/SUR009") == 0


def test_publish_message_validates_upload_body() -> None:
    broker = RecordingBroker()
    publisher = Publisher(broker)

    accepted = publisher.publish_message(
        {"surveyorId": "sur010", "latitude": 1.0, "longitude": 2.0, "timestamp": "2024-06-01T10:00:00Z"}
    )
    rejected = publisher.publish_message({"surveyorId": "sur010", "latitude": "north"})

    assert accepted is not None and accepted.entity_id == "SUR010"
    assert rejected is None
    assert [topic for topic, _ in broker.messages] == ["/topic/location/SUR010"]
    assert publisher.failures == 1


def test_publish_of_non_update_is_counted_not_raised() -> None:
    broker = RecordingBroker()
    publisher = Publisher(broker)

    publisher.publish({"entityId": "SUR009"})  # type: ignore[arg-type]

    assert broker.messages == []
    assert publisher.failures == 1
    assert publisher.published == 0
