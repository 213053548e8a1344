#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .boundary import run_command
from .chromecast import ChromecastTransport, build_capabilities
from .config import Config, load_config_from_json
from .connection import ConnectionManager
from .event_bus import EventBus
from .models import SenderStatus
from .mqtt_controller import MqttController
from .sender import SenderClient
from .util import slugify, to_jsonable

_LOGGER = logging.getLogger(__name__)
_MODULE_DIR = Path(__file__).parent

# -----------------------------------------------------------------------------
# Helper dataclasses
# -----------------------------------------------------------------------------


@dataclass
class Runtime:
    """Everything built from the configuration."""
    config: Config
    event_bus: EventBus
    connection: Optional[ConnectionManager]
    senders: Dict[str, SenderClient]

# -----------------------------------------------------------------------------
# Main Application
# -----------------------------------------------------------------------------


async def main() -> int:
    args = _parse_args()
    config = _load_config(args)
    runtime = _build_runtime(config)

    try:
        if args.send is not None:
            _start_senders(runtime)
            return await _run_once(runtime, args.send, args.sender)
        await _run_service(runtime)
        return 0
    finally:
        _LOGGER.debug("Shutting down...")
        for sender in runtime.senders.values():
            await sender.close()
        if runtime.connection is not None:
            await runtime.connection.close()

# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cast_sender")
    parser.add_argument(
        "-c", "--config", type=Path, required=False,
        default=_MODULE_DIR / "config.json",
        help="Path to configuration .json file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--send", metavar="JSON", help="Send one command, print the result and exit")
    parser.add_argument("--sender", help="Sender to use with --send (default: first configured)")
    return parser.parse_args()


def _load_config(args: argparse.Namespace) -> Config:
    """Loads config and sets up logging."""
    config = load_config_from_json(args.config)

    if args.debug:
        config.app.debug = True

    logging.basicConfig(
        level=logging.DEBUG if config.app.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    if not config.app.debug:
        for name in ("pychromecast", "paho", "zeroconf"):
            logging.getLogger(name).setLevel(logging.WARNING)

    _LOGGER.info("Loaded configuration from: %s", args.config)
    return config


def _build_runtime(config: Config) -> Runtime:
    event_bus = EventBus()

    connection: Optional[ConnectionManager] = None
    if config.device.configured:
        device = config.device
        connection = ConnectionManager(
            device.endpoint(),
            lambda: ChromecastTransport(request_timeout=device.request_timeout_seconds),
            reconnect_delay=device.reconnect_delay_seconds,
            connect_timeout=device.connect_timeout_seconds,
        )
    else:
        _LOGGER.warning("No device host configured; senders will report unconfigured")

    senders: Dict[str, SenderClient] = {}
    for sender_config in config.senders:
        sender_id = slugify(sender_config.name)
        senders[sender_id] = SenderClient(
            sender_id,
            connection,
            build_capabilities(sender_config.applications),
            event_bus,
            name=sender_config.name,
        )

    event_bus.subscribe("sender_status", _log_status)
    return Runtime(config=config, event_bus=event_bus, connection=connection, senders=senders)


def _log_status(data: dict) -> None:
    _LOGGER.info("Sender %s: %s", data.get("sender"), data.get("status"))


def _start_senders(runtime: Runtime) -> None:
    for sender in runtime.senders.values():
        sender.start()


async def _run_once(runtime: Runtime, raw_command: str, sender_name: Optional[str]) -> int:
    """Waits for the connection, runs one command and prints its result."""
    try:
        payload = json.loads(raw_command)
    except json.JSONDecodeError as e:
        _LOGGER.error("Invalid --send payload: %s", e)
        return 2

    if sender_name is None:
        sender = next(iter(runtime.senders.values()))
    else:
        sender = runtime.senders.get(slugify(sender_name))
        if sender is None:
            _LOGGER.error("Unknown sender: %s", sender_name)
            return 2

    if runtime.connection is not None:
        await _wait_connected(runtime, sender)

    try:
        result = await run_command(sender, payload)
    except Exception as err:
        print(json.dumps({"error": str(err)}, indent=2))
        return 1

    print(json.dumps(to_jsonable(result), indent=2))
    return 0


async def _wait_connected(runtime: Runtime, sender: SenderClient) -> None:
    """Wait until the sender has seen its first status snapshot."""
    device = runtime.config.device
    ready = asyncio.Event()

    def _on_output(data: dict) -> None:
        if data.get("sender") == sender.id and "platform" in (data.get("message") or {}):
            ready.set()

    runtime.event_bus.subscribe("sender_output", _on_output)
    try:
        if sender.current_status in (SenderStatus.CONNECTED, SenderStatus.JOINED) and runtime.connection.device_status:
            return
        await asyncio.wait_for(ready.wait(), timeout=device.connect_timeout_seconds)
    except asyncio.TimeoutError:
        _LOGGER.warning("Still not connected to %s; trying anyway", runtime.connection.endpoint)
    finally:
        runtime.event_bus.unsubscribe("sender_output", _on_output)


async def _run_service(runtime: Runtime) -> None:
    """Runs until cancelled, bridging senders to MQTT when configured."""
    mqtt_controller: Optional[MqttController] = None
    if runtime.config.mqtt.enabled:
        mqtt_controller = MqttController(
            event_bus=runtime.event_bus,
            loop=asyncio.get_running_loop(),
            senders=runtime.senders,
            device_name=runtime.config.app.name,
            config=runtime.config.mqtt,
        )
        mqtt_controller.start()
    else:
        _LOGGER.info("MQTT disabled; status is only logged")

    try:
        # Subscribed before the senders report their first status
        _start_senders(runtime)
        await asyncio.Event().wait()
    finally:
        if mqtt_controller is not None:
            _LOGGER.debug("Stopping MQTT controller...")
            mqtt_controller.stop()


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
