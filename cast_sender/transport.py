"""Interfaces for the device connection and the sessions running on it.

The connection manager and senders only ever talk to these interfaces; the
pychromecast implementation lives in `chromecast.py`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .models import ApplicationSession, DeviceStatus, Endpoint, MediaStatus, Volume

# -----------------------------------------------------------------------------
# Event channel payloads
# -----------------------------------------------------------------------------


@dataclass
class DeviceStatusEvent:
    status: DeviceStatus


@dataclass
class TransportErrorEvent:
    error: BaseException


@dataclass
class TransportClosedEvent:
    reason: Optional[str] = None


TransportEvent = Union[DeviceStatusEvent, TransportErrorEvent, TransportClosedEvent]


@dataclass
class MediaStatusEvent:
    status: Optional[MediaStatus]


@dataclass
class SessionClosedEvent:
    pass


SessionEvent = Union[MediaStatusEvent, SessionClosedEvent]


@dataclass
class MediaItem:
    """One item to load into a media receiver."""

    url: str
    content_type: str = "audio/mp3"
    title: Optional[str] = None
    image: Optional[str] = None
    stream_type: str = "BUFFERED"
    metadata: Dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class RemoteSession(ABC):
    """Handle on one running application session.

    Emits MediaStatusEvent/SessionClosedEvent on `events`.
    """

    def __init__(self, session: ApplicationSession) -> None:
        self.session = session
        self.events: "asyncio.Queue[SessionEvent]" = asyncio.Queue()

    @property
    def app_id(self) -> str:
        return self.session.app_id

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @abstractmethod
    async def get_status(self) -> Optional[MediaStatus]:
        """Current media status, or None when nothing is loaded."""

    @abstractmethod
    async def play(self) -> Any:
        pass

    @abstractmethod
    async def pause(self) -> Any:
        pass

    @abstractmethod
    async def stop(self) -> Any:
        pass

    @abstractmethod
    async def seek(self, position: float) -> Any:
        pass

    @abstractmethod
    async def load(self, items: List[MediaItem]) -> Any:
        """Load the first item and enqueue the rest."""

    def emit_status(self, status: Optional[MediaStatus]) -> None:
        self.events.put_nowait(MediaStatusEvent(status))

    def emit_closed(self) -> None:
        self.events.put_nowait(SessionClosedEvent())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(app_id={self.app_id!r}, session_id={self.session_id!r})"


# -----------------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------------


class Transport(ABC):
    """One RPC channel to one device.

    Asynchronous device events are delivered on `events`; a transport is
    single-use (connect once, close once).
    """

    def __init__(self) -> None:
        self.events: "asyncio.Queue[TransportEvent]" = asyncio.Queue()

    @abstractmethod
    async def connect(self, endpoint: Endpoint) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_status(self) -> DeviceStatus:
        pass

    @abstractmethod
    async def get_volume(self) -> Volume:
        pass

    @abstractmethod
    async def set_volume(self, *, level: Optional[float] = None, muted: Optional[bool] = None) -> Volume:
        pass

    @abstractmethod
    async def launch(self, app_id: str) -> RemoteSession:
        pass

    @abstractmethod
    async def join(self, session: ApplicationSession) -> RemoteSession:
        pass

    @abstractmethod
    async def stop(self, session: RemoteSession) -> DeviceStatus:
        pass
