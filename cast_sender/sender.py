"""Sender client.

A sender is one logical consumer of the shared device connection. It
tracks the single application session it is attached to and routes each
command to the connection manager, the session, or the session's adapter.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional, Tuple

from .adapters import Capability, CapabilityTable, SessionAdapter
from .errors import MalformedCommandError, NotConnectedError
from .event_bus import EventBus
from .models import (
    STATUS_INDICATORS,
    ApplicationSession,
    Command,
    MediaCommandSupport,
    SenderStatus,
)
from .transport import MediaStatusEvent, RemoteSession, SessionClosedEvent

if TYPE_CHECKING:
    from .connection import ConnectionManager

_LOGGER = logging.getLogger(__name__)


class SenderClient:
    """One logical sender multiplexed over a ConnectionManager."""

    def __init__(
        self,
        sender_id: str,
        connection: Optional["ConnectionManager"],
        capabilities: CapabilityTable,
        event_bus: EventBus,
        *,
        name: Optional[str] = None,
    ) -> None:
        self.id = sender_id
        self.name = name or sender_id
        self.capabilities = capabilities
        self._connection = connection
        self._event_bus = event_bus

        # Both set or both None
        self._adapter: Optional[SessionAdapter] = None
        self._session: Optional[RemoteSession] = None
        self._session_task: Optional[asyncio.Task] = None

        self._status: Optional[SenderStatus] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Register with the connection manager (or report unconfigured)."""
        if self._connection is None:
            self.status(SenderStatus.UNCONFIGURED)
            return

        self.status(SenderStatus.DISCONNECTED)
        self._connection.register(self)

        if self._connection.is_connected:
            self.status(SenderStatus.CONNECTED)

    async def close(self) -> None:
        """Deregister and drop any attachment."""
        if self._connection is not None:
            await self._connection.deregister(self)
        self._detach()

    @property
    def connection(self) -> Optional["ConnectionManager"]:
        return self._connection

    @property
    def is_attached(self) -> bool:
        return self._adapter is not None and self._session is not None

    @property
    def session(self) -> Optional[RemoteSession]:
        return self._session

    @property
    def adapter(self) -> Optional[SessionAdapter]:
        return self._adapter

    @property
    def current_status(self) -> Optional[SenderStatus]:
        return self._status

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def status(self, status: SenderStatus) -> None:
        self._status = status
        fill, shape = STATUS_INDICATORS[status]
        self._event_bus.publish(
            "sender_status",
            {"sender": self.id, "status": status.value, "fill": fill, "shape": shape},
        )

    def send(self, message: dict) -> None:
        self._event_bus.publish("sender_output", {"sender": self.id, "message": message})

    def error(self, command_type: str, err: BaseException) -> None:
        self.status(SenderStatus.ERROR)
        self._event_bus.publish(
            "sender_error",
            {"sender": self.id, "command": command_type, "error": str(err)},
        )

    # -------------------------------------------------------------------------
    # Attach / detach
    # -------------------------------------------------------------------------

    async def join(self, session: ApplicationSession, capability: Capability) -> None:
        """Attach to a session already running on the device."""
        if self._is_attached_to(session):
            return

        remote = await self._require_connection().join_session(session, capability)

        # A launch may have attached us to the same session meanwhile
        if self._is_attached_to(session):
            return

        self._attach(remote, capability)

    def unjoin(self) -> None:
        """Drop the current attachment (if any) and report connected."""
        self._detach()
        self.status(SenderStatus.CONNECTED)

    def _is_attached_to(self, session: ApplicationSession) -> bool:
        return self._session is not None and self._session.session_id == session.session_id

    def _attach(self, remote: RemoteSession, capability: Capability) -> Tuple[SessionAdapter, RemoteSession]:
        adapter = capability.adapter
        session = adapter.attach(remote)

        self._detach()
        self._adapter = adapter
        self._session = session
        self._session_task = asyncio.get_running_loop().create_task(self._process_session_events(session))

        _LOGGER.info("Sender %s joined %s session %s", self.id, capability.name, session.session_id)
        self.status(SenderStatus.JOINED)
        return adapter, session

    def _detach(self) -> None:
        task = self._session_task
        self._session_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if self._session is not None:
            _LOGGER.debug("Sender %s detached from session %s", self.id, self._session.session_id)

        self._adapter = None
        self._session = None

    async def _process_session_events(self, session: RemoteSession) -> None:
        while True:
            event = await session.events.get()
            if session is not self._session:
                return

            if isinstance(event, MediaStatusEvent):
                self.send({"payload": event.status.to_dict() if event.status is not None else None})

            elif isinstance(event, SessionClosedEvent):
                _LOGGER.info("Session %s closed", session.session_id)
                self.unjoin()
                return

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def send_command(self, command: Command) -> Any:
        """Dispatch a command and return its result."""
        if command.is_platform_command:
            return await self._require_connection().send_device_command(command, self._session)

        adapter, session = await self._ensure_attached(command)

        if command.is_media_command:
            return await self._send_media_command(session, command)

        return await adapter.send_app_command(session, command)

    async def _ensure_attached(self, command: Command) -> Tuple[SessionAdapter, RemoteSession]:
        if self._adapter is not None and self._session is not None:
            return self._adapter, self._session

        capability = self.capabilities.resolve(command.app)
        remote = await self._require_connection().launch(capability)
        return self._attach(remote, capability)

    async def _send_media_command(self, session: RemoteSession, command: Command) -> Any:
        if command.type == "GET_STATUS":
            return await session.get_status()

        # Querying status first also initialises the media channel
        status = await session.get_status()
        if status is None:
            _LOGGER.debug("Sender %s: nothing loaded, ignoring %s", self.id, command.type)
            return None

        # See MediaCommandSupport for the bit layout
        if command.type == "PAUSE":
            if status.supports(MediaCommandSupport.PAUSE):
                return await session.pause()
        elif command.type == "PLAY":
            # No "resume" bit is reported, so always try
            return await session.play()
        elif command.type == "SEEK":
            if command.time not in (None, "") and status.supports(MediaCommandSupport.SEEK):
                return await session.seek(_seek_position(command.time))
        elif command.type == "STOP":
            return await session.stop()
        else:
            raise MalformedCommandError("Malformed media control command")

        _LOGGER.debug("Sender %s: receiver does not support %s, skipping", self.id, command.type)
        return None

    def _require_connection(self) -> "ConnectionManager":
        if self._connection is None:
            raise NotConnectedError("Sender has no configured connection")
        return self._connection


def _seek_position(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise MalformedCommandError(f"Invalid seek time: {value!r}") from err
