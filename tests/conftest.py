"""Shared fixtures."""

import asyncio
from datetime import datetime, timezone

import pytest

from broadcast import LocalBroadcast
from event_router import EventRouter
from formatter import MessageFormatter
from registry import PresenceRegistry

FIXED_NOW = datetime(2024, 1, 15, 15, 7, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def registry() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def formatter() -> MessageFormatter:
    return MessageFormatter("UTC", clock=lambda: FIXED_NOW)


@pytest.fixture
def transport() -> LocalBroadcast:
    return LocalBroadcast()


@pytest.fixture
def router(registry: PresenceRegistry, formatter: MessageFormatter, transport: LocalBroadcast) -> EventRouter:
    return EventRouter(registry, formatter, transport)


def drain(outbox: asyncio.Queue) -> list[dict]:
    """Everything queued for a connection so far."""
    frames = []
    while not outbox.empty():
        frames.append(outbox.get_nowait())
    return frames
