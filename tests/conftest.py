"""Shared fixtures and fakes.

FakeTransport/FakeSession stand in for the pychromecast-backed classes so
the connection manager and senders can be driven without a device.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from cast_sender.adapters import Capability, CapabilityTable, SessionAdapter
from cast_sender.connection import ConnectionManager
from cast_sender.event_bus import EventBus
from cast_sender.models import ApplicationSession, Command, DeviceStatus, Endpoint, MediaStatus, Volume
from cast_sender.sender import SenderClient
from cast_sender.transport import MediaItem, RemoteSession, Transport

DMR_APP_ID = "CC1AD845"
YOUTUBE_APP_ID = "233637DE"


class FakeSession(RemoteSession):
    def __init__(self, session: ApplicationSession, media_status: Optional[MediaStatus] = None) -> None:
        super().__init__(session)
        self.media_status = media_status
        self.calls: List[tuple] = []

    async def get_status(self) -> Optional[MediaStatus]:
        self.calls.append(("get_status",))
        return self.media_status

    async def play(self) -> Any:
        self.calls.append(("play",))

    async def pause(self) -> Any:
        self.calls.append(("pause",))

    async def stop(self) -> Any:
        self.calls.append(("stop",))

    async def seek(self, position: float) -> Any:
        self.calls.append(("seek", position))

    async def load(self, items: List[MediaItem]) -> Any:
        self.calls.append(("load", items))

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeTransport(Transport):
    def __init__(
        self,
        status: Optional[DeviceStatus] = None,
        connect_error: Optional[BaseException] = None,
        media_status: Optional[MediaStatus] = None,
        hang: bool = False,
    ) -> None:
        super().__init__()
        self.status = status if status is not None else DeviceStatus()
        self.connect_error = connect_error
        self.media_status = media_status
        self.hang = hang
        self.calls: List[tuple] = []
        self.sessions: List[FakeSession] = []
        self.close_count = 0

    async def connect(self, endpoint: Endpoint) -> None:
        self.calls.append(("connect", endpoint))
        if self.hang:
            await asyncio.Event().wait()
        if self.connect_error is not None:
            raise self.connect_error

    async def close(self) -> None:
        self.close_count += 1
        self.calls.append(("close",))

    async def get_status(self) -> DeviceStatus:
        self.calls.append(("get_status",))
        return self.status

    async def get_volume(self) -> Volume:
        self.calls.append(("get_volume",))
        return self.status.volume

    async def set_volume(self, *, level: Optional[float] = None, muted: Optional[bool] = None) -> Volume:
        self.calls.append(("set_volume", level, muted))
        return self.status.volume

    async def launch(self, app_id: str) -> RemoteSession:
        self.calls.append(("launch", app_id))
        app = ApplicationSession(app_id=app_id, session_id=f"launched-{len(self.sessions) + 1}")
        self.status = DeviceStatus(applications=[app], volume=self.status.volume)
        return self._new_session(app)

    async def join(self, session: ApplicationSession) -> RemoteSession:
        self.calls.append(("join", session.session_id))
        return self._new_session(session)

    async def stop(self, session: RemoteSession) -> DeviceStatus:
        self.calls.append(("stop", session.session_id))
        self.status = DeviceStatus(volume=self.status.volume)
        return self.status

    def _new_session(self, app: ApplicationSession) -> FakeSession:
        session = FakeSession(app, self.media_status)
        self.sessions.append(session)
        return session

    def count(self, name: str) -> int:
        return [call[0] for call in self.calls].count(name)


class RecordingAdapter(SessionAdapter):
    """Adapter that records what it was asked to do."""

    def __init__(self) -> None:
        self.attached: List[RemoteSession] = []
        self.commands: List[tuple] = []

    def attach(self, session: RemoteSession) -> RemoteSession:
        self.attached.append(session)
        return session

    async def send_app_command(self, session: RemoteSession, command: Command) -> Any:
        self.commands.append((session, command))
        return {"handled": command.type}


class EventRecorder:
    def __init__(self, bus: EventBus) -> None:
        self.events: List[tuple] = []
        for topic in ("sender_status", "sender_output", "sender_error"):
            bus.subscribe(topic, self._recorder(topic))

    def _recorder(self, topic: str) -> Callable[[dict], None]:
        def _record(data: dict) -> None:
            self.events.append((topic, data))

        return _record

    def _for(self, topic: str, sender_id: str) -> List[dict]:
        return [data for t, data in self.events if t == topic and data["sender"] == sender_id]

    def statuses(self, sender_id: str) -> List[str]:
        return [data["status"] for data in self._for("sender_status", sender_id)]

    def outputs(self, sender_id: str) -> List[dict]:
        return [data["message"] for data in self._for("sender_output", sender_id)]

    def errors(self, sender_id: str) -> List[dict]:
        return self._for("sender_error", sender_id)


def app_session(app_id: str = DMR_APP_ID, session_id: str = "s-1") -> ApplicationSession:
    return ApplicationSession(app_id=app_id, session_id=session_id, transport_id=f"t-{session_id}")


def device_status(*sessions: ApplicationSession) -> DeviceStatus:
    return DeviceStatus(applications=list(sessions), volume=Volume(level=0.4, muted=False))


async def settle(rounds: int = 25) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def dmr_adapter() -> RecordingAdapter:
    return RecordingAdapter()


@pytest.fixture
def youtube_adapter() -> RecordingAdapter:
    return RecordingAdapter()


@pytest.fixture
def capabilities(dmr_adapter: RecordingAdapter, youtube_adapter: RecordingAdapter) -> CapabilityTable:
    return CapabilityTable(
        [
            Capability(name="DefaultMediaReceiver", app_id=DMR_APP_ID, adapter=dmr_adapter),
            Capability(name="YouTube", app_id=YOUTUBE_APP_ID, adapter=youtube_adapter),
        ]
    )


@pytest.fixture
def transports() -> List[FakeTransport]:
    """Every transport the manager created, oldest first."""
    return []


@pytest.fixture
def transport_options() -> Dict[str, Any]:
    """Keyword arguments for the next FakeTransport; tests may change them."""
    return {}


@pytest.fixture
def transport_factory(transports: List[FakeTransport], transport_options: Dict[str, Any]):
    def _factory() -> FakeTransport:
        transport = FakeTransport(**transport_options)
        transports.append(transport)
        return transport

    return _factory


@pytest.fixture
def manager(transport_factory) -> ConnectionManager:
    return ConnectionManager(
        Endpoint("192.0.2.10"),
        transport_factory,
        reconnect_delay=0.05,
        connect_timeout=1.0,
    )


@pytest.fixture
def make_sender(manager: ConnectionManager, capabilities: CapabilityTable, bus: EventBus):
    def _make(sender_id: str = "music", table: Optional[CapabilityTable] = None, connection: Any = manager) -> SenderClient:
        return SenderClient(sender_id, connection, table if table is not None else capabilities, bus)

    return _make
