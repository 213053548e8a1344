import asyncio
import json
import logging
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .boundary import run_command
from .config import MqttConfig
from .event_bus import EventBus, EventHandler, subscribe
from .models import STATUS_INDICATORS, SenderStatus
from .sender import SenderClient
from .util import slugify, to_jsonable

_LOGGER = logging.getLogger(__name__)


class MqttController(EventHandler):
    """Exposes senders over MQTT.

    Topics, per sender, under `<prefix>/<device>/<sender>/`:
      command  (in)   JSON command payload
      status   (out)  retained status indicator
      output   (out)  device/media status messages
      result   (out)  result of each command
      error    (out)  failure of each command
    """

    def __init__(
        self,
        event_bus: EventBus,
        loop: asyncio.AbstractEventLoop,
        senders: Dict[str, SenderClient],
        device_name: str,
        config: MqttConfig,
    ):
        self._loop = loop
        self._senders = senders
        self._host = config.host
        self._port = config.port
        self._username = config.username
        self._password = config.password

        self._device_id = slugify(device_name)
        self._topic_prefix = f"{config.topic_prefix}/{self._device_id}"
        self._availability_topic = f"{self._topic_prefix}/availability"
        self.topics: Dict[str, Dict[str, str]] = {}
        for sender_id in senders:
            base = f"{self._topic_prefix}/{sender_id}"
            self.topics[sender_id] = {
                "command": f"{base}/command",
                "status": f"{base}/status",
                "output": f"{base}/output",
                "result": f"{base}/result",
                "error": f"{base}/error",
            }

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.will_set(self._availability_topic, "offline", retain=True)

        super().__init__(event_bus)

    def start(self):
        try:
            if self._username:
                self._client.username_pw_set(self._username, self._password)

            _LOGGER.debug("Connecting to MQTT broker at %s:%s", self._host, self._port)
            self._client.connect(self._host, self._port, 60)
            self._client.loop_start()
        except Exception:
            _LOGGER.exception("Failed to connect to MQTT broker")

    def stop(self):
        self._client.publish(self._availability_topic, "offline", retain=True)
        self._client.loop_stop()
        self._client.disconnect()
        self.unsubscribe_all()
        _LOGGER.debug("Disconnected from MQTT broker")

    # -------------------------------------------------------------------------
    # MQTT callbacks (paho network thread)
    # -------------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            _LOGGER.info("Connected to MQTT broker")
            for topics in self.topics.values():
                client.subscribe(topics["command"])
            client.publish(self._availability_topic, "online", retain=True)

            # Statuses reported before the broker connection was up
            for sender_id, sender in self._senders.items():
                self._publish_status(sender_id, sender.current_status)
        else:
            _LOGGER.error("Failed to connect to MQTT, reason code %s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        _LOGGER.warning("MQTT disconnected: %s", reason_code)

    def _on_message(self, client, userdata, msg):
        sender = self._sender_for_topic(msg.topic)
        if sender is None:
            _LOGGER.debug("Ignoring MQTT message on %s", msg.topic)
            return

        payload: Any = None
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            _LOGGER.warning("Non-JSON command on %s; using default command", msg.topic)

        asyncio.run_coroutine_threadsafe(self._run_command(sender, payload), self._loop)

    def _sender_for_topic(self, topic: str) -> Optional[SenderClient]:
        for sender_id, topics in self.topics.items():
            if topics["command"] == topic:
                return self._senders.get(sender_id)
        return None

    async def _run_command(self, sender: SenderClient, payload: Any) -> None:
        try:
            result = await run_command(sender, payload)
        except Exception:
            # Already reported on the error topic via sender_error
            return
        self._publish_json(self.topics[sender.id]["result"], {"result": to_jsonable(result)})

    # -------------------------------------------------------------------------
    # Event bus -> MQTT
    # -------------------------------------------------------------------------

    @subscribe
    def sender_status(self, data: dict):
        topics = self.topics.get(data.get("sender"))
        if topics is None:
            return
        status = {k: data.get(k) for k in ("status", "fill", "shape")}
        self._publish_json(topics["status"], status, retain=True)

    def _publish_status(self, sender_id: str, status: Optional[SenderStatus]) -> None:
        if status is None:
            return
        fill, shape = STATUS_INDICATORS[status]
        self._publish_json(
            self.topics[sender_id]["status"],
            {"status": status.value, "fill": fill, "shape": shape},
            retain=True,
        )

    @subscribe
    def sender_output(self, data: dict):
        topics = self.topics.get(data.get("sender"))
        if topics is None:
            return
        self._publish_json(topics["output"], data.get("message"))

    @subscribe
    def sender_error(self, data: dict):
        topics = self.topics.get(data.get("sender"))
        if topics is None:
            return
        self._publish_json(topics["error"], {"command": data.get("command"), "error": data.get("error")})

    def _publish_json(self, topic: str, payload: Any, retain: bool = False) -> None:
        self._client.publish(topic, json.dumps(to_jsonable(payload)), retain=retain)
