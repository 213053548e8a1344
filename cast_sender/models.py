"""Shared data models for the cast sender."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, IntFlag
from typing import Any, Dict, List, Optional

DEFAULT_CAST_PORT = 8009

# Device-wide commands handled by the connection manager
PLATFORM_COMMANDS = (
    "CLOSE",
    "GET_VOLUME",
    "GET_CAST_STATUS",
    "MUTE",
    "UNMUTE",
    "VOLUME",
)

# Media control commands handled by any attached session
MEDIA_COMMANDS = (
    "GET_STATUS",
    "PAUSE",
    "PLAY",
    "SEEK",
    "STOP",
)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class SenderStatus(str, Enum):
    """Status indicator reported by each sender."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    JOINED = "joined"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    UNCONFIGURED = "unconfigured"


# (fill, shape) hints for status displays
STATUS_INDICATORS: Dict[SenderStatus, tuple] = {
    SenderStatus.CONNECTING: ("yellow", "ring"),
    SenderStatus.CONNECTED: ("green", "ring"),
    SenderStatus.JOINED: ("green", "dot"),
    SenderStatus.ERROR: ("red", "ring"),
    SenderStatus.DISCONNECTED: ("red", "ring"),
    SenderStatus.UNCONFIGURED: ("red", "ring"),
}


class MediaCommandSupport(IntFlag):
    """Bits of MediaStatus.supported_media_commands."""

    PAUSE = 1
    SEEK = 2
    STREAM_VOLUME = 4
    STREAM_MUTE = 8
    SKIP_FORWARD = 16
    SKIP_BACKWARD = 32
    QUEUE_NEXT = 64
    QUEUE_PREV = 128
    QUEUE_SHUFFLE = 256
    QUEUE_REPEAT_ALL = 1024
    QUEUE_REPEAT_ONE = 2048
    QUEUE_REPEAT = 3072


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int = DEFAULT_CAST_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ApplicationSession:
    """One application running on the device."""

    app_id: str
    session_id: str
    transport_id: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class Volume:
    level: Optional[float] = None
    muted: Optional[bool] = None


@dataclass
class DeviceStatus:
    """Device-wide status snapshot."""

    applications: List[ApplicationSession] = field(default_factory=list)
    volume: Volume = field(default_factory=Volume)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MediaStatus:
    """Media status of an attached session."""

    player_state: str = "UNKNOWN"
    supported_media_commands: int = 0
    current_time: Optional[float] = None
    duration: Optional[float] = None
    content_id: Optional[str] = None
    content_type: Optional[str] = None
    title: Optional[str] = None
    media_session_id: Optional[int] = None

    def supports(self, flag: MediaCommandSupport) -> bool:
        return bool(self.supported_media_commands & flag)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Command:
    """A command addressed to a sender.

    Fields other than type/app/volume/time are kept in `extra` and passed
    through to the application adapter untouched.
    """

    type: str
    app: Optional[str] = None
    volume: Optional[float] = None
    time: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Command":
        known = {"type", "app", "volume", "time"}
        return cls(
            type=str(data.get("type")),
            app=data.get("app"),
            volume=data.get("volume"),
            time=data.get("time"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @property
    def is_platform_command(self) -> bool:
        return self.type in PLATFORM_COMMANDS

    @property
    def is_media_command(self) -> bool:
        return self.type in MEDIA_COMMANDS
