"""Shared test fixtures and fakes."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from roomcron.scheduling import (
    DeliveryReceipt,
    JobDispatcher,
    JobOwner,
    JobRegistry,
    JobStore,
    MemoryBrain,
    MessageMetadata,
    Namespace,
    SchedulingEngine,
)

# Sunday 2026-01-04 12:00 UTC
START = datetime(2026, 1, 4, 12, 0, tzinfo=UTC)


async def settle(rounds: int = 50) -> None:
    """Let pending tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Manually advanced clock. Sleepers wake when time passes their deadline."""

    def __init__(self, now: datetime = START):
        self._now = now
        self._sleepers: list[tuple[datetime, asyncio.Future[None]]] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        deadline = self._now + timedelta(seconds=seconds)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((deadline, future))
        try:
            await future
        finally:
            self._sleepers = [s for s in self._sleepers if s[1] is not future]

    @property
    def sleeper_count(self) -> int:
        return len(self._sleepers)

    async def advance(
        self, delta: timedelta | None = None, *, to: datetime | None = None
    ) -> None:
        await settle()
        if to is not None:
            self._now = to
        elif delta is not None:
            self._now += delta
        for deadline, future in list(self._sleepers):
            if deadline <= self._now and not future.done():
                future.set_result(None)
        await settle()


class RecordingSender:
    """Message sender that records calls and returns predictable receipts."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(
        self,
        delivery_room: str,
        owner: JobOwner,
        message: str,
        *,
        post_in_thread: bool,
        thread_id: str | None,
    ) -> DeliveryReceipt:
        self.calls.append(
            {
                "room": delivery_room,
                "owner": owner,
                "message": message,
                "post_in_thread": post_in_thread,
                "thread_id": thread_id,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        n = len(self.calls)
        return DeliveryReceipt(message_id=f"$event{n}", thread_id=f"$thread{n}")

    @property
    def messages(self) -> list[str]:
        return [call["message"] for call in self.calls]


class FailingBrain(MemoryBrain):
    """Memory brain whose operations can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_get = False
        self.fail_set = False
        self.fail_delete = False

    def get(self, namespace):
        if self.fail_get:
            raise OSError("brain unavailable")
        return super().get(namespace)

    def set(self, namespace, key, record):
        if self.fail_set:
            raise OSError("disk full")
        super().set(namespace, key, record)

    def delete(self, namespace, key):
        if self.fail_delete:
            raise OSError("read-only")
        super().delete(namespace, key)


class FakeRooms:
    """Room oracle with fixed membership.

    Rooms: ``general`` and ``dev`` are public, ``secret`` is private. The bot
    is in all three; ``elsewhere`` resolves but the bot is absent.
    """

    def __init__(self) -> None:
        self.names = {
            "general": "!general",
            "dev": "!dev",
            "secret": "!secret",
            "elsewhere": "!elsewhere",
        }
        self.public = {"!general", "!dev"}
        self.joined = {"!general", "!dev", "!secret"}

    def resolve_room(self, name_or_id: str) -> str | None:
        if name_or_id in self.names.values():
            return name_or_id
        return self.names.get(name_or_id.lower())

    def is_non_public(self, room_id: str) -> bool:
        return room_id not in self.public

    def public_joined_room_ids(self) -> set[str]:
        return self.public & self.joined

    def is_bot_present(self, room_id: str, requester_room: str) -> bool:
        return room_id in self.joined


# =============================================================================
# Factories
# =============================================================================


def make_owner(user_id: str = "U1", room: str = "!general") -> JobOwner:
    return JobOwner(id=user_id, name=f"user-{user_id}", room=room)


def make_metadata(message_id: str = "$origin") -> MessageMetadata:
    return MessageMetadata(message_id=message_id)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def rooms() -> FakeRooms:
    return FakeRooms()


@pytest.fixture
def brain() -> FailingBrain:
    return FailingBrain()


@pytest.fixture
def store(brain: FailingBrain) -> JobStore:
    return JobStore(brain, Namespace.SCHEDULES)


@pytest.fixture
async def engine(
    clock: FakeClock, sender: RecordingSender
) -> AsyncGenerator[SchedulingEngine, None]:
    engine = SchedulingEngine(JobDispatcher(sender), clock=clock)
    yield engine
    await engine.shutdown()


@pytest.fixture
def registry(store: JobStore, engine: SchedulingEngine) -> JobRegistry:
    return JobRegistry(store, engine)
