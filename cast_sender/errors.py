"""Errors raised by the cast sender."""


class CastError(Exception):
    """Base class for cast sender errors."""


class NotConnectedError(CastError):
    """An operation needs an active device connection and there is none."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__(message)


class MalformedCommandError(CastError):
    """Unknown command type or out-of-range command parameter."""

    def __init__(self, message: str = "Malformed command") -> None:
        super().__init__(message)


class UnknownApplicationError(CastError):
    """The command names an application the sender does not support."""

    def __init__(self, app: object) -> None:
        super().__init__(f"Unknown application: {app!r}")
        self.app = app
