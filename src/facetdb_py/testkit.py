from __future__ import annotations

from collections.abc import Callable

from .mocks import ANY, FakeDynamoDBClient, client_error


def no_sleep(_: float) -> None:
    return None


def recording_sleep(delays: list[float]) -> Callable[[float], None]:
    """Sleep stand-in that records each requested delay instead of waiting."""

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    return sleep


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "client_error",
    "no_sleep",
    "recording_sleep",
]
