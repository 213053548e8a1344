"""
Transport and sessions backed by pychromecast.

pychromecast is blocking and calls its listeners from its own socket
thread, so:
- every device call runs on a single-worker executor, one request at a
  time per connection
- listener callbacks are handed to the asyncio loop with
  call_soon_threadsafe and end up on the `events` queues
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

import pychromecast
from pychromecast.config import APP_MEDIA_RECEIVER, APP_YOUTUBE
from pychromecast.controllers.media import MediaStatusListener
from pychromecast.controllers.receiver import CastStatusListener
from pychromecast.controllers.youtube import YouTubeController
from pychromecast.socket_client import (
    CONNECTION_STATUS_DISCONNECTED,
    CONNECTION_STATUS_FAILED,
    CONNECTION_STATUS_LOST,
    ConnectionStatusListener,
)

from .adapters import (
    Capability,
    CapabilityTable,
    DefaultMediaReceiverAdapter,
    SessionAdapter,
    media_dict,
)
from .errors import CastError, MalformedCommandError, NotConnectedError, UnknownApplicationError
from .models import ApplicationSession, Command, DeviceStatus, Endpoint, MediaStatus, Volume
from .transport import (
    DeviceStatusEvent,
    MediaItem,
    RemoteSession,
    Transport,
    TransportClosedEvent,
)

_LOGGER = logging.getLogger(__name__)

_LOST_STATES = (CONNECTION_STATUS_LOST, CONNECTION_STATUS_FAILED, CONNECTION_STATUS_DISCONNECTED)


# -----------------------------------------------------------------------------
# pychromecast -> model conversion
# -----------------------------------------------------------------------------


def device_status_from_cast(status: Any) -> DeviceStatus:
    """Convert a pychromecast CastStatus (or None) to a DeviceStatus."""
    if status is None:
        return DeviceStatus()

    applications: List[ApplicationSession] = []
    if getattr(status, "app_id", None) and getattr(status, "session_id", None):
        applications.append(
            ApplicationSession(
                app_id=status.app_id,
                session_id=status.session_id,
                transport_id=getattr(status, "transport_id", None),
                display_name=getattr(status, "display_name", None),
            )
        )

    return DeviceStatus(
        applications=applications,
        volume=Volume(
            level=getattr(status, "volume_level", None),
            muted=getattr(status, "volume_muted", None),
        ),
    )


def media_status_from_cast(status: Any) -> Optional[MediaStatus]:
    """Convert a pychromecast MediaStatus; None when no media is loaded."""
    if status is None or getattr(status, "media_session_id", None) is None:
        return None

    return MediaStatus(
        player_state=str(getattr(status, "player_state", None) or "UNKNOWN"),
        supported_media_commands=int(getattr(status, "supported_media_commands", 0) or 0),
        current_time=getattr(status, "current_time", None),
        duration=getattr(status, "duration", None),
        content_id=getattr(status, "content_id", None),
        content_type=getattr(status, "content_type", None),
        title=getattr(status, "title", None),
        media_session_id=status.media_session_id,
    )


# -----------------------------------------------------------------------------
# Listener (runs on the pychromecast socket thread)
# -----------------------------------------------------------------------------


class _CastListener(ConnectionStatusListener, CastStatusListener, MediaStatusListener):
    def __init__(self, transport: "ChromecastTransport") -> None:
        self._transport = transport

    def new_connection_status(self, status) -> None:
        _LOGGER.debug("Cast connection status: %s", status.status)
        if status.status in _LOST_STATES:
            self._transport._post(TransportClosedEvent(reason=status.status))

    def new_cast_status(self, status) -> None:
        self._transport._on_cast_status(status)

    def new_media_status(self, status) -> None:
        self._transport._on_media_status(status)

    def load_media_failed(self, queue_item_id: int, error_code: int) -> None:
        _LOGGER.warning("Loading media item %s failed (error %s)", queue_item_id, error_code)


# -----------------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------------


class ChromecastSession(RemoteSession):
    """A running receiver application reached through the transport's cast."""

    def __init__(self, transport: "ChromecastTransport", session: ApplicationSession) -> None:
        super().__init__(session)
        self._transport = transport
        self._controllers: Dict[type, Any] = {}

    async def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking call on the transport's request queue."""
        return await self._transport._call(func, *args, **kwargs)

    def controller(self, factory: Type[Any]) -> Any:
        """Get (registering on first use) an app controller such as YouTubeController."""
        ctrl = self._controllers.get(factory)
        if ctrl is None:
            ctrl = factory()
            self._transport.cast.register_handler(ctrl)
            self._controllers[factory] = ctrl
        return ctrl

    async def get_status(self) -> Optional[MediaStatus]:
        return await self.call(self._get_status_blocking)

    def _get_status_blocking(self) -> Optional[MediaStatus]:
        media = self._transport.cast.media_controller
        done = threading.Event()
        media.update_status(callback_function=lambda *_: done.set())
        if not done.wait(self._transport.request_timeout):
            _LOGGER.debug("Timed out waiting for media status of %s", self.session_id)
        return media_status_from_cast(media.status)

    async def play(self) -> Any:
        return await self.call(lambda: self._transport.cast.media_controller.play())

    async def pause(self) -> Any:
        return await self.call(lambda: self._transport.cast.media_controller.pause())

    async def stop(self) -> Any:
        return await self.call(lambda: self._transport.cast.media_controller.stop())

    async def seek(self, position: float) -> Any:
        return await self.call(lambda: self._transport.cast.media_controller.seek(position))

    async def load(self, items: List[MediaItem]) -> Any:
        return await self.call(self._load_blocking, items)

    def _load_blocking(self, items: List[MediaItem]) -> None:
        media = self._transport.cast.media_controller
        for index, item in enumerate(items):
            media.play_media(
                item.url,
                item.content_type,
                title=item.title,
                thumb=item.image,
                stream_type=item.stream_type,
                metadata=item.metadata or None,
                enqueue=index > 0,
            )
            if index == 0:
                media.block_until_active(timeout=self._transport.request_timeout)


# -----------------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------------


class ChromecastTransport(Transport):
    """One pychromecast connection; single use."""

    def __init__(self, *, request_timeout: float = 10.0, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        super().__init__()
        self._loop = loop or asyncio.get_running_loop()
        self.request_timeout = request_timeout

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cast-transport")
        self._listener = _CastListener(self)
        self._cast: Optional[pychromecast.Chromecast] = None
        self._closed = False

        self._sessions: List[ChromecastSession] = []
        self._sessions_lock = threading.Lock()

    @property
    def cast(self) -> pychromecast.Chromecast:
        if self._cast is None:
            raise NotConnectedError()
        return self._cast

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if self._closed:
            raise NotConnectedError("Transport is closed")
        return await self._loop.run_in_executor(self._executor, partial(func, *args, **kwargs))

    def _post(self, event: Any) -> None:
        """Queue a transport event from any thread."""
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(self.events.put_nowait, event)
        except RuntimeError:
            # Loop already closed during shutdown
            _LOGGER.debug("Dropping transport event %r", event)

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def connect(self, endpoint: Endpoint) -> None:
        await self._call(self._connect_blocking, endpoint)

    def _connect_blocking(self, endpoint: Endpoint) -> None:
        _LOGGER.debug("Opening cast connection to %s", endpoint)
        cast = pychromecast.get_chromecast_from_host(
            (endpoint.host, endpoint.port, None, None, None),
            tries=1,
            timeout=self.request_timeout,
        )
        self._cast = cast

        cast.register_connection_listener(self._listener)
        cast.register_status_listener(self._listener)
        cast.media_controller.register_status_listener(self._listener)

        try:
            cast.wait(timeout=self.request_timeout)
        except Exception:
            self._disconnect_blocking()
            raise

        if cast.status is None:
            self._disconnect_blocking()
            raise CastError(f"No status received from {endpoint}")

    async def close(self) -> None:
        try:
            await self._call(self._disconnect_blocking)
        finally:
            self._closed = True
            self._executor.shutdown(wait=False)
            with self._sessions_lock:
                self._sessions.clear()

    def _disconnect_blocking(self) -> None:
        cast = self._cast
        self._cast = None
        if cast is not None:
            cast.disconnect(timeout=self.request_timeout)

    # -------------------------------------------------------------------------
    # Device commands
    # -------------------------------------------------------------------------

    async def get_status(self) -> DeviceStatus:
        return await self._call(self._get_status_blocking)

    def _get_status_blocking(self) -> DeviceStatus:
        cast = self.cast
        done = threading.Event()
        cast.socket_client.receiver_controller.update_status(callback_function=lambda *_: done.set())
        if not done.wait(self.request_timeout):
            _LOGGER.debug("Timed out waiting for receiver status")
        return device_status_from_cast(cast.status)

    async def get_volume(self) -> Volume:
        return await self._call(lambda: self._get_status_blocking().volume)

    async def set_volume(self, *, level: Optional[float] = None, muted: Optional[bool] = None) -> Volume:
        return await self._call(self._set_volume_blocking, level, muted)

    def _set_volume_blocking(self, level: Optional[float], muted: Optional[bool]) -> Volume:
        cast = self.cast
        if level is not None:
            cast.set_volume(level)
        if muted is not None:
            cast.set_volume_muted(muted)
        return device_status_from_cast(cast.status).volume

    async def launch(self, app_id: str) -> RemoteSession:
        session = await self._call(self._launch_blocking, app_id)
        return self._add_session(session)

    def _launch_blocking(self, app_id: str) -> ApplicationSession:
        cast = self.cast
        cast.start_app(app_id, timeout=self.request_timeout)

        for session in device_status_from_cast(cast.status).applications:
            if session.app_id == app_id:
                return session
        raise CastError(f"Application {app_id} did not start")

    async def join(self, session: ApplicationSession) -> RemoteSession:
        current = await self._call(lambda: device_status_from_cast(self.cast.status).applications)
        if not any(s.session_id == session.session_id for s in current):
            raise CastError(f"Session {session.session_id} is no longer running")
        return self._add_session(session)

    async def stop(self, session: RemoteSession) -> DeviceStatus:
        return await self._call(self._stop_blocking, session)

    def _stop_blocking(self, session: RemoteSession) -> DeviceStatus:
        cast = self.cast
        if cast.status is not None and cast.status.session_id == session.session_id:
            cast.quit_app()
        return device_status_from_cast(cast.status)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def _add_session(self, session: ApplicationSession) -> ChromecastSession:
        remote = ChromecastSession(self, session)
        with self._sessions_lock:
            self._sessions.append(remote)
        return remote

    def _on_cast_status(self, status: Any) -> None:
        self._post(DeviceStatusEvent(device_status_from_cast(status)))

        running = getattr(status, "session_id", None)
        with self._sessions_lock:
            closed = [s for s in self._sessions if s.session_id != running]
            self._sessions = [s for s in self._sessions if s.session_id == running]

        for session in closed:
            _LOGGER.debug("Session %s is no longer running", session.session_id)
            self._loop.call_soon_threadsafe(session.emit_closed)

    def _on_media_status(self, status: Any) -> None:
        media = media_status_from_cast(status)
        with self._sessions_lock:
            sessions = list(self._sessions)
        for session in sessions:
            self._loop.call_soon_threadsafe(session.emit_status, media)


# -----------------------------------------------------------------------------
# YouTube
# -----------------------------------------------------------------------------


class YouTubeAdapter(SessionAdapter):
    """Commands for the YouTube receiver application."""

    def attach(self, session: RemoteSession) -> RemoteSession:
        if isinstance(session, ChromecastSession):
            session.controller(YouTubeController)
        return session

    async def send_app_command(self, session: RemoteSession, command: Command) -> Any:
        youtube = session.controller(YouTubeController)

        if command.type == "CLEAR_QUEUE":
            return await session.call(youtube.clear_playlist)

        media = media_dict(command)
        video_id = media.get("videoId")
        if not video_id:
            raise MalformedCommandError(f"{command.type} command requires media.videoId")

        if command.type == "MEDIA":
            return await session.call(youtube.play_video, video_id, media.get("playlistId"))
        if command.type == "QUEUE":
            return await session.call(youtube.add_to_queue, video_id)
        if command.type == "PLAY_NEXT":
            return await session.call(youtube.play_next, video_id)
        if command.type == "REMOVE":
            return await session.call(youtube.remove_video, video_id)

        raise MalformedCommandError(f"Unsupported YouTube command: {command.type}")


# -----------------------------------------------------------------------------
# Application registry
# -----------------------------------------------------------------------------

APPLICATIONS: Dict[str, Tuple[str, Callable[[], SessionAdapter]]] = {
    "DefaultMediaReceiver": (APP_MEDIA_RECEIVER, DefaultMediaReceiverAdapter),
    "YouTube": (APP_YOUTUBE, YouTubeAdapter),
}


def build_capabilities(names: Iterable[str]) -> CapabilityTable:
    """Build a capability table from application names, in the given order."""
    capabilities = []
    for name in names:
        if name not in APPLICATIONS:
            raise UnknownApplicationError(name)
        app_id, adapter_factory = APPLICATIONS[name]
        capabilities.append(Capability(name=name, app_id=app_id, adapter=adapter_factory()))
    return CapabilityTable(capabilities)
