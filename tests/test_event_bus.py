"""Tests for the event bus."""

from cast_sender.event_bus import EventBus, EventHandler, subscribe


class _Handler(EventHandler):
    def __init__(self, event_bus: EventBus) -> None:
        self.seen = []
        super().__init__(event_bus)

    @subscribe
    def sender_status(self, data: dict) -> None:
        self.seen.append(data)

    def sender_output(self, data: dict) -> None:
        self.seen.append(data)


def test_publish_adds_topic() -> None:
    bus = EventBus()
    received = []
    bus.subscribe("sender_status", received.append)

    data = {"sender": "music"}
    bus.publish("sender_status", data)

    assert received == [{"sender": "music", "__topic": "sender_status"}]
    assert data == {"sender": "music"}


def test_failing_listener_does_not_block_others() -> None:
    bus = EventBus()
    received = []

    def _broken(data: dict) -> None:
        raise RuntimeError("boom")

    bus.subscribe("sender_output", _broken)
    bus.subscribe("sender_output", received.append)
    bus.publish("sender_output", {"message": 1})

    assert len(received) == 1


def test_event_handler_subscriptions() -> None:
    bus = EventBus()
    handler = _Handler(bus)

    bus.publish("sender_status", {"status": "connected"})
    bus.publish("sender_output", {"message": {}})
    assert [d["__topic"] for d in handler.seen] == ["sender_status"]

    handler.unsubscribe_all()
    bus.publish("sender_status", {"status": "joined"})
    assert len(handler.seen) == 1
