"""Tests for the MQTT bridge."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cast_sender.config import MqttConfig
from cast_sender.errors import MalformedCommandError
from cast_sender.event_bus import EventBus
from cast_sender.models import DeviceStatus, SenderStatus
from cast_sender.mqtt_controller import MqttController

from conftest import settle

_BASE = "cast/living_room/music"


@pytest.fixture
def client():
    with patch("cast_sender.mqtt_controller.mqtt.Client") as client_cls:
        yield client_cls.return_value


@pytest.fixture
def sender():
    sender = MagicMock()
    sender.id = "music"
    sender.current_status = None
    sender.send_command = AsyncMock(return_value=DeviceStatus())
    return sender


def _controller(bus, client, sender, loop=None, **config) -> MqttController:
    return MqttController(
        event_bus=bus,
        loop=loop or MagicMock(),
        senders={"music": sender},
        device_name="Living Room",
        config=MqttConfig(enabled=True, host="broker.local", **config),
    )


def _published(client, topic: str) -> list:
    return [c for c in client.publish.call_args_list if c.args[0] == topic]


def test_topics(client, sender) -> None:
    controller = _controller(EventBus(), client, sender)

    assert controller.topics["music"]["command"] == f"{_BASE}/command"
    assert controller.topics["music"]["status"] == f"{_BASE}/status"
    client.will_set.assert_called_once_with("cast/living_room/availability", "offline", retain=True)


def test_start_and_stop(client, sender) -> None:
    bus = EventBus()
    controller = _controller(bus, client, sender, username="user", password="secret")

    controller.start()
    client.username_pw_set.assert_called_once_with("user", "secret")
    client.connect.assert_called_once_with("broker.local", 1883, 60)
    client.loop_start.assert_called_once()

    controller.stop()
    client.publish.assert_called_with("cast/living_room/availability", "offline", retain=True)
    client.loop_stop.assert_called_once()
    client.disconnect.assert_called_once()

    client.publish.reset_mock()
    bus.publish("sender_status", {"sender": "music", "status": "connected"})
    client.publish.assert_not_called()


def test_on_connect_subscribes(client, sender) -> None:
    controller = _controller(EventBus(), client, sender)

    controller._on_connect(client, None, {}, 0)

    client.subscribe.assert_called_once_with(f"{_BASE}/command")
    client.publish.assert_called_with("cast/living_room/availability", "online", retain=True)


def test_on_connect_republishes_current_status(client, sender) -> None:
    controller = _controller(EventBus(), client, sender)
    sender.current_status = SenderStatus.UNCONFIGURED

    controller._on_connect(client, None, {}, 0)

    client.publish.assert_any_call(
        f"{_BASE}/status",
        json.dumps({"status": "unconfigured", "fill": "red", "shape": "ring"}),
        retain=True,
    )


def test_status_is_retained(client, sender) -> None:
    bus = EventBus()
    _controller(bus, client, sender)

    bus.publish("sender_status", {"sender": "music", "status": "joined", "fill": "green", "shape": "dot"})

    client.publish.assert_called_once_with(
        f"{_BASE}/status",
        json.dumps({"status": "joined", "fill": "green", "shape": "dot"}),
        retain=True,
    )


def test_output_and_error(client, sender) -> None:
    bus = EventBus()
    _controller(bus, client, sender)

    bus.publish("sender_output", {"sender": "music", "message": {"payload": None}})
    bus.publish("sender_error", {"sender": "music", "command": "PLAY", "error": "Not connected"})
    bus.publish("sender_output", {"sender": "unknown", "message": {}})

    assert _published(client, f"{_BASE}/output")[0].args[1] == json.dumps({"payload": None})
    assert _published(client, f"{_BASE}/error")[0].args[1] == json.dumps(
        {"command": "PLAY", "error": "Not connected"}
    )
    assert client.publish.call_count == 2


@pytest.mark.asyncio
async def test_command_message_runs_and_publishes_result(client, sender) -> None:
    controller = _controller(EventBus(), client, sender, loop=asyncio.get_running_loop())

    controller._on_message(client, None, MagicMock(topic=f"{_BASE}/command", payload=b'{"type": "PLAY"}'))
    await settle()

    command = sender.send_command.await_args.args[0]
    assert command.type == "PLAY"
    assert command.app == "DefaultMediaReceiver"

    result = _published(client, f"{_BASE}/result")
    assert json.loads(result[0].args[1]) == {"result": DeviceStatus().to_dict()}


@pytest.mark.asyncio
async def test_non_json_command_asks_for_status(client, sender) -> None:
    controller = _controller(EventBus(), client, sender, loop=asyncio.get_running_loop())

    controller._on_message(client, None, MagicMock(topic=f"{_BASE}/command", payload=b"not json"))
    await settle()

    assert sender.send_command.await_args.args[0].type == "GET_CAST_STATUS"


@pytest.mark.asyncio
async def test_failed_command_has_no_result(client, sender) -> None:
    sender.send_command.side_effect = MalformedCommandError("bad volume")
    controller = _controller(EventBus(), client, sender, loop=asyncio.get_running_loop())

    controller._on_message(client, None, MagicMock(topic=f"{_BASE}/command", payload=b'{"type": "VOLUME"}'))
    await settle()

    sender.error.assert_called_once()
    assert sender.error.call_args.args[0] == "VOLUME"
    assert _published(client, f"{_BASE}/result") == []


def test_unknown_topic_is_ignored(client, sender) -> None:
    loop = MagicMock()
    controller = _controller(EventBus(), client, sender, loop=loop)

    controller._on_message(client, None, MagicMock(topic="cast/other/command", payload=b"{}"))

    sender.send_command.assert_not_called()
