"""Caller-facing command boundary.

Normalises raw inbound payloads and turns command failures into a
visible sender error before handing them back to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .models import Command
from .sender import SenderClient

_LOGGER = logging.getLogger(__name__)

DEFAULT_COMMAND_TYPE = "GET_CAST_STATUS"
DEFAULT_APP = "DefaultMediaReceiver"


def normalize_payload(payload: Any) -> Command:
    """Apply inbound defaults: status request for junk, DefaultMediaReceiver for no app."""
    if not isinstance(payload, dict) or not payload.get("type"):
        data: Dict[str, Any] = {"type": DEFAULT_COMMAND_TYPE}
    else:
        data = dict(payload)

    if data.get("app") is None:
        data["app"] = DEFAULT_APP

    return Command.from_dict(data)


async def run_command(sender: SenderClient, payload: Any) -> Any:
    """Run one inbound payload against a sender.

    Any failure degrades the sender's status to error, is published as a
    `sender_error` event and is re-raised.
    """
    command = normalize_payload(payload)
    _LOGGER.debug("Sender %s: running %s", sender.id, command)

    try:
        return await sender.send_command(command)
    except Exception as err:
        _LOGGER.error("Sender %s: %s failed: %s", sender.id, command.type, err)
        sender.error(command.type, err)
        raise
