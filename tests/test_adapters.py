"""Tests for capability tables and the media receiver adapter."""

import pytest

from cast_sender.adapters import Capability, CapabilityTable, DefaultMediaReceiverAdapter, parse_media_items
from cast_sender.errors import MalformedCommandError, UnknownApplicationError
from cast_sender.models import Command

from conftest import DMR_APP_ID, FakeSession, RecordingAdapter, app_session


def test_capability_table() -> None:
    adapter = RecordingAdapter()
    table = CapabilityTable([Capability(name="DefaultMediaReceiver", app_id=DMR_APP_ID, adapter=adapter)])

    assert len(table) == 1
    assert table.names == ["DefaultMediaReceiver"]
    assert table.find_by_app_id(DMR_APP_ID).adapter is adapter
    assert table.find_by_app_id("233637DE") is None
    assert table.resolve("DefaultMediaReceiver").app_id == DMR_APP_ID

    with pytest.raises(UnknownApplicationError):
        table.resolve("YouTube")
    with pytest.raises(UnknownApplicationError):
        table.resolve(None)


def test_parse_media_items() -> None:
    items = parse_media_items(
        [
            {"url": "http://192.0.2.1/a.mp3", "title": "A"},
            {"url": "http://192.0.2.1/b.mp4", "contentType": "video/mp4", "streamType": "LIVE"},
        ]
    )

    assert [i.url for i in items] == ["http://192.0.2.1/a.mp3", "http://192.0.2.1/b.mp4"]
    assert items[0].content_type == "audio/mp3"
    assert items[0].title == "A"
    assert items[1].content_type == "video/mp4"
    assert items[1].stream_type == "LIVE"

    single = parse_media_items({"url": "http://192.0.2.1/c.mp3"})
    assert len(single) == 1


def test_parse_media_items_rejects_bad_input() -> None:
    for media in (None, "http://192.0.2.1/a.mp3", [], [{"title": "no url"}], [42]):
        with pytest.raises(MalformedCommandError):
            parse_media_items(media)


@pytest.mark.asyncio
async def test_media_receiver_loads_media() -> None:
    session = FakeSession(app_session())
    adapter = DefaultMediaReceiverAdapter()

    assert adapter.attach(session) is session

    await adapter.send_app_command(
        session, Command(type="MEDIA", extra={"media": {"url": "http://192.0.2.1/a.mp3"}})
    )

    assert session.names() == ["load"]
    assert session.calls[0][1][0].url == "http://192.0.2.1/a.mp3"


@pytest.mark.asyncio
async def test_media_receiver_rejects_other_commands() -> None:
    with pytest.raises(MalformedCommandError):
        await DefaultMediaReceiverAdapter().send_app_command(FakeSession(app_session()), Command(type="QUEUE"))
