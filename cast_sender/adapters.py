"""Per-application adapters and the capability table that selects them."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import MalformedCommandError, UnknownApplicationError
from .models import Command
from .transport import MediaItem, RemoteSession

_LOGGER = logging.getLogger(__name__)


class SessionAdapter(ABC):
    """Translates generic application commands into session calls."""

    def attach(self, session: RemoteSession) -> RemoteSession:
        """Prepare a freshly launched or joined session for use."""
        return session

    @abstractmethod
    async def send_app_command(self, session: RemoteSession, command: Command) -> Any:
        pass


@dataclass(frozen=True)
class Capability:
    """An application a sender can control."""

    name: str
    app_id: str
    adapter: SessionAdapter


class CapabilityTable:
    """Ordered, immutable list of capabilities supplied by configuration."""

    def __init__(self, capabilities: Iterable[Capability]) -> None:
        self._capabilities: Tuple[Capability, ...] = tuple(capabilities)

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._capabilities)

    def __len__(self) -> int:
        return len(self._capabilities)

    def find_by_app_id(self, app_id: str) -> Optional[Capability]:
        # First declared capability wins on duplicates
        for capability in self._capabilities:
            if capability.app_id == app_id:
                return capability
        return None

    def resolve(self, name: Optional[str]) -> Capability:
        """Look up a capability by application name; raises UnknownApplicationError."""
        for capability in self._capabilities:
            if capability.name == name:
                return capability
        raise UnknownApplicationError(name)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self._capabilities]


# -----------------------------------------------------------------------------
# Default Media Receiver
# -----------------------------------------------------------------------------


def parse_media_items(media: Any) -> List[MediaItem]:
    """Parse the `media` field of a MEDIA command (one object or a list)."""
    if isinstance(media, dict):
        media = [media]
    if not isinstance(media, Sequence) or isinstance(media, str) or not media:
        raise MalformedCommandError("MEDIA command requires a media object or list")

    items: List[MediaItem] = []
    for entry in media:
        if not isinstance(entry, dict) or not entry.get("url"):
            raise MalformedCommandError("Media entries require a url")
        items.append(
            MediaItem(
                url=str(entry["url"]),
                content_type=str(entry.get("contentType") or "audio/mp3"),
                title=entry.get("title"),
                image=entry.get("image"),
                stream_type=str(entry.get("streamType") or "BUFFERED"),
                metadata=dict(entry.get("metadata") or {}),
            )
        )
    return items


class DefaultMediaReceiverAdapter(SessionAdapter):
    """Commands for the stock media receiver application."""

    async def send_app_command(self, session: RemoteSession, command: Command) -> Any:
        if command.type == "MEDIA":
            items = parse_media_items(command.extra.get("media"))
            _LOGGER.debug("Loading %d media item(s) into %r", len(items), session)
            return await session.load(items)

        raise MalformedCommandError(f"Unsupported DefaultMediaReceiver command: {command.type}")


def media_dict(command: Command) -> Dict[str, Any]:
    media = command.extra.get("media")
    if not isinstance(media, dict):
        raise MalformedCommandError(f"{command.type} command requires a media object")
    return media
