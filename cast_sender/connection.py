"""Connection manager.

Owns the single device connection shared by all registered senders:

- first registration connects, last deregistration disconnects
- transport errors/closes tear the connection down and schedule one
  reconnect after a fixed delay
- every device status snapshot re-evaluates which session each sender is
  attached to, in the order the snapshots arrived
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Set, Tuple

from .adapters import Capability, CapabilityTable
from .errors import MalformedCommandError, NotConnectedError
from .models import (
    ApplicationSession,
    Command,
    ConnectionState,
    DeviceStatus,
    Endpoint,
    SenderStatus,
)
from .transport import (
    DeviceStatusEvent,
    RemoteSession,
    Transport,
    TransportClosedEvent,
    TransportErrorEvent,
)

if TYPE_CHECKING:
    from .sender import SenderClient

_LOGGER = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 3.0


def match_session(
    status: DeviceStatus, capabilities: CapabilityTable
) -> Optional[Tuple[ApplicationSession, Capability]]:
    """Find the first running session one of the capabilities can control."""
    for session in status.applications:
        capability = capabilities.find_by_app_id(session.app_id)
        if capability is not None:
            return session, capability
    return None


def volume_level(volume: Any) -> float:
    """Convert a 0-100 volume to the device's 0.0-1.0 level."""
    if isinstance(volume, bool) or not isinstance(volume, (int, float)):
        raise MalformedCommandError(f"Volume must be a number between 0 and 100, got {volume!r}")
    if not 0 <= volume <= 100:
        raise MalformedCommandError(f"Volume must be between 0 and 100, got {volume!r}")
    return volume / 100


class ConnectionManager:
    """Shares one transport between many senders."""

    def __init__(
        self,
        endpoint: Endpoint,
        transport_factory: Callable[[], Transport],
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        connect_timeout: Optional[float] = None,
    ) -> None:
        self.endpoint = endpoint
        self._transport_factory = transport_factory
        self._reconnect_delay = reconnect_delay
        self._connect_timeout = connect_timeout

        self._state = ConnectionState.IDLE
        self._closing = False
        self._transport: Optional[Transport] = None
        self._device_status: Optional[DeviceStatus] = None

        # Senders own themselves; we only keep them around for callbacks
        self._senders: "weakref.WeakValueDictionary[str, SenderClient]" = weakref.WeakValueDictionary()

        self._connect_task: Optional[asyncio.Task] = None
        self._events_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

        # Snapshots are applied one at a time, in arrival order
        self._status_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._transport is not None

    @property
    def is_closing(self) -> bool:
        return self._closing

    @property
    def device_status(self) -> Optional[DeviceStatus]:
        return self._device_status

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def senders(self) -> List["SenderClient"]:
        return list(self._senders.values())

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, sender: "SenderClient") -> None:
        """Add a sender; connects if the manager is idle."""
        self._senders[sender.id] = sender
        _LOGGER.debug("Registered sender %s (%d total)", sender.id, len(self._senders))

        if self._closing:
            return

        if self._state is ConnectionState.IDLE:
            self._cancel_reconnect()
            self._start_connect()
        elif self.is_connected and self._device_status is not None:
            # Late joiner: attach it to whatever is already running
            self._spawn(self._evaluate_late_sender(sender))

    async def deregister(
        self,
        sender: "SenderClient",
        on_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        """Remove a sender; disconnects once nobody is left."""
        try:
            self._senders.pop(sender.id, None)
            _LOGGER.debug("Deregistered sender %s (%d left)", sender.id, len(self._senders))

            if self._closing:
                return

            if not self._senders:
                self._cancel_reconnect()
                if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                    await self._disconnect()

                # Someone registered while we were tearing down
                if self._senders and self._state is ConnectionState.IDLE:
                    self._start_connect()
        finally:
            if on_complete is not None:
                on_complete()

    async def close(self) -> None:
        """Shut the manager down for good."""
        if self._closing:
            return

        _LOGGER.debug("Closing connection manager for %s", self.endpoint)
        self._closing = True
        self._cancel_reconnect()
        await self._disconnect()

        for task in list(self._tasks):
            task.cancel()

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    async def launch(self, capability: Capability) -> RemoteSession:
        """Start a new application session on the device."""
        transport = self._require_transport()
        _LOGGER.info("Launching %s (%s) on %s", capability.name, capability.app_id, self.endpoint)
        return await transport.launch(capability.app_id)

    async def join_session(self, session: ApplicationSession, capability: Capability) -> RemoteSession:
        """Attach to a session that is already running on the device."""
        transport = self._require_transport()
        _LOGGER.debug("Joining %s session %s", capability.name, session.session_id)
        return await transport.join(session)

    async def send_device_command(self, command: Command, session: Optional[RemoteSession] = None) -> Any:
        """Run one of the device-wide commands."""
        transport = self._require_transport()
        command_type = command.type

        if command_type == "CLOSE":
            if session is not None:
                return await transport.stop(session)
            return await transport.get_status()

        if command_type == "GET_VOLUME":
            await transport.get_volume()
            return await transport.get_status()

        if command_type == "GET_CAST_STATUS":
            return await transport.get_status()

        if command_type in ("MUTE", "UNMUTE"):
            await transport.set_volume(muted=command_type == "MUTE")
            return await transport.get_status()

        if command_type == "VOLUME":
            level = volume_level(command.volume)
            await transport.set_volume(level=level)
            return await transport.get_status()

        raise MalformedCommandError(f"Unknown command type: {command_type}")

    def _require_transport(self) -> Transport:
        if not self.is_connected:
            raise NotConnectedError()
        assert self._transport is not None
        return self._transport

    # -------------------------------------------------------------------------
    # Connect / disconnect
    # -------------------------------------------------------------------------

    def _start_connect(self) -> None:
        if self._closing or self._state is not ConnectionState.IDLE or not self._senders:
            return

        loop = asyncio.get_running_loop()
        transport = self._transport_factory()
        self._transport = transport
        self._state = ConnectionState.CONNECTING
        _LOGGER.info("Connecting to %s", self.endpoint)

        self._events_task = loop.create_task(self._process_events(transport))
        self._broadcast_status(SenderStatus.CONNECTING)
        self._connect_task = loop.create_task(self._connect(transport))

    async def _connect(self, transport: Transport) -> None:
        try:
            if self._connect_timeout:
                await asyncio.wait_for(transport.connect(self.endpoint), self._connect_timeout)
            else:
                await transport.connect(self.endpoint)

            if transport is not self._transport:
                return

            self._state = ConnectionState.CONNECTED
            _LOGGER.info("Connected to %s", self.endpoint)
            self._broadcast_status(SenderStatus.CONNECTED)

            status = await transport.get_status()
            if transport is not self._transport:
                return

            await self._handle_device_status(status)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.warning("Connection to %s failed: %r", self.endpoint, err)
            _LOGGER.debug("Connection failure", exc_info=True)
            if transport is self._transport:
                await self._connection_lost()
        finally:
            if self._connect_task is asyncio.current_task():
                self._connect_task = None

    async def _disconnect(self) -> None:
        if self._state is ConnectionState.DISCONNECTING:
            return

        transport = self._transport
        was_active = self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED)
        self._transport = None
        self._state = ConnectionState.DISCONNECTING

        current = asyncio.current_task()
        for task in (self._connect_task, self._events_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._connect_task = None
        self._events_task = None

        if transport is not None and was_active:
            try:
                await transport.close()
            except Exception:
                _LOGGER.debug("Ignoring error while closing transport", exc_info=True)

        self._device_status = None
        self._state = ConnectionState.IDLE

        for sender in self.senders:
            sender.unjoin()

        self._broadcast_status(SenderStatus.DISCONNECTED)
        _LOGGER.info("Disconnected from %s", self.endpoint)

    async def _connection_lost(self) -> None:
        await self._disconnect()
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or not self._senders:
            return

        self._cancel_reconnect()
        _LOGGER.info("Reconnecting to %s in %.1f second(s)", self.endpoint, self._reconnect_delay)
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            self._reconnect_delay, self._reconnect
        )

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        self._start_connect()

    # -------------------------------------------------------------------------
    # Device events
    # -------------------------------------------------------------------------

    async def _process_events(self, transport: Transport) -> None:
        while True:
            event = await transport.events.get()
            if transport is not self._transport:
                return

            if isinstance(event, DeviceStatusEvent):
                if self._state is ConnectionState.CONNECTED:
                    await self._handle_device_status(event.status)
                else:
                    _LOGGER.debug("Ignoring device status while %s", self._state.value)

            elif isinstance(event, TransportErrorEvent):
                _LOGGER.warning("Connection to %s errored: %r", self.endpoint, event.error)
                await self._connection_lost()
                return

            elif isinstance(event, TransportClosedEvent):
                _LOGGER.warning("Connection to %s closed (%s)", self.endpoint, event.reason or "no reason")
                await self._connection_lost()
                return

    async def _handle_device_status(self, status: DeviceStatus) -> None:
        async with self._status_lock:
            if self._state is not ConnectionState.CONNECTED:
                return

            self._device_status = status
            _LOGGER.debug(
                "Device status: %s",
                [(s.app_id, s.session_id) for s in status.applications],
            )

            for sender in self.senders:
                if self._state is not ConnectionState.CONNECTED:
                    return
                await self._evaluate_sender(sender, status)

            self._send_to_senders({"platform": status.to_dict()})

    async def _evaluate_sender(self, sender: "SenderClient", status: DeviceStatus) -> None:
        match = match_session(status, sender.capabilities)
        if match is None:
            sender.unjoin()
            return

        session, capability = match
        try:
            await sender.join(session, capability)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            _LOGGER.warning(
                "Sender %s failed to join %s session %s: %r",
                sender.id,
                capability.name,
                session.session_id,
                err,
            )

    async def _evaluate_late_sender(self, sender: "SenderClient") -> None:
        async with self._status_lock:
            status = self._device_status
            if status is None or not self.is_connected or self._senders.get(sender.id) is not sender:
                return
            await self._evaluate_sender(sender, status)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def _broadcast_status(self, status: SenderStatus) -> None:
        for sender in self.senders:
            sender.status(status)

    def _send_to_senders(self, message: dict) -> None:
        for sender in self.senders:
            sender.send(message)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
