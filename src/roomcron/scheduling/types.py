"""Job types.

Public types:
- Job: A scheduled message (one-off or recurring)
- CallbackJob: A job that notifies a completion callback
- JobOwner / MessageMetadata: Immutable value objects held by a job
- CronSchedule / InstantSchedule: The schedule variant, fixed at construction
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from croniter import croniter

from roomcron.scheduling.errors import CorruptRecord, InvalidPattern

logger = logging.getLogger(__name__)


class JobKind(Enum):
    RECURRING = "recurring"
    ONE_OFF = "one-off"


class Namespace(Enum):
    """Brain keys for the two job classes."""

    REMINDERS = "hubot_reminders"
    SCHEDULES = "hubot_schedules"

    @property
    def noun(self) -> str:
        return "reminder" if self is Namespace.REMINDERS else "schedule"


@dataclass(frozen=True)
class CronSchedule:
    """Recurring schedule evaluated in UTC."""

    expression: str

    kind = JobKind.RECURRING

    def next_fire(self, after: datetime) -> datetime:
        """Next occurrence strictly after ``after``."""
        return croniter(self.expression, after.astimezone(UTC)).get_next(datetime)


@dataclass(frozen=True)
class InstantSchedule:
    """Single fire at an absolute instant."""

    at: datetime

    kind = JobKind.ONE_OFF

    def next_fire(self, after: datetime) -> datetime | None:
        return self.at if self.at > after else None


Schedule = CronSchedule | InstantSchedule


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def classify(pattern: str | datetime) -> Schedule:
    """Classify a pattern as recurring (cron) or one-off (instant).

    Naive instants are taken to be UTC.

    Raises:
        InvalidPattern: If the pattern is neither.
    """
    if isinstance(pattern, datetime):
        return InstantSchedule(_as_utc(pattern))

    text = pattern.strip() if isinstance(pattern, str) else ""
    if not text:
        raise InvalidPattern(str(pattern))

    if croniter.is_valid(text):
        return CronSchedule(text)

    try:
        instant = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidPattern(pattern) from None
    return InstantSchedule(_as_utc(instant))


@dataclass(frozen=True)
class JobOwner:
    """User who created a job and the room they created it from."""

    id: str
    name: str
    room: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "room": self.room}


@dataclass(frozen=True)
class MessageMetadata:
    """Provenance of the request and, after delivery, of the last message."""

    message_id: str
    thread_id: str | None = None
    last_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"messageId": self.message_id}
        if self.thread_id is not None:
            data["threadId"] = self.thread_id
        if self.last_url is not None:
            data["lastUrl"] = self.last_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageMetadata:
        return cls(
            message_id=data["messageId"],
            thread_id=data.get("threadId"),
            last_url=data.get("lastUrl"),
        )


@dataclass(frozen=True)
class Job:
    """A scheduled message.

    Only ``metadata`` changes after construction, and only by replacing the
    whole job through ``with_metadata``.
    """

    id: str
    pattern: str
    owner: JobOwner
    delivery_room: str
    message_template: str
    metadata: MessageMetadata
    post_in_thread: bool = False
    schedule: Schedule = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        schedule = classify(self.pattern)
        if isinstance(self.pattern, datetime):
            object.__setattr__(self, "pattern", schedule.at.isoformat())
        object.__setattr__(self, "schedule", schedule)
        if not self.delivery_room:
            object.__setattr__(self, "delivery_room", self.owner.room)

    @property
    def kind(self) -> JobKind:
        return self.schedule.kind

    @property
    def is_recurring(self) -> bool:
        return self.kind is JobKind.RECURRING

    def next_fire(self, after: datetime) -> datetime | None:
        return self.schedule.next_fire(after)

    def with_metadata(self, metadata: MessageMetadata) -> Job:
        return dataclasses.replace(self, metadata=metadata)

    def with_template(self, message_template: str) -> Job:
        return dataclasses.replace(self, message_template=message_template)

    def complete(self) -> None:
        """Hook run after each fire and on cancel. Plain jobs do nothing."""

    def serialize(
        self,
    ) -> tuple[str, dict[str, Any], str, dict[str, Any], bool]:
        owner = self.owner.to_dict()
        if self.delivery_room != self.owner.room:
            owner["deliveryRoom"] = self.delivery_room
        return (
            self.pattern,
            owner,
            self.message_template,
            self.metadata.to_dict(),
            self.post_in_thread,
        )

    def to_record(self) -> list[Any]:
        """JSON form of ``serialize()``, as stored in the brain."""
        return list(self.serialize())

    @classmethod
    def deserialize(cls, job_id: str, record: Sequence[Any]) -> Job:
        """Rebuild a job from a stored record.

        Raises:
            CorruptRecord: If the record is malformed.
        """
        if not isinstance(record, list | tuple) or len(record) != 5:
            raise CorruptRecord(job_id, "expected a 5-element record")
        pattern, owner, message_template, metadata, post_in_thread = record

        if not isinstance(pattern, str):
            raise CorruptRecord(job_id, "pattern must be a string")
        if not isinstance(message_template, str):
            raise CorruptRecord(job_id, "message must be a string")
        if not isinstance(post_in_thread, bool):
            raise CorruptRecord(job_id, "postInThread must be a boolean")
        if not isinstance(owner, dict) or not isinstance(metadata, dict):
            raise CorruptRecord(job_id, "owner and metadata must be objects")

        try:
            job_owner = JobOwner(
                id=_require_str(owner, "id"),
                name=_require_str(owner, "name"),
                room=_require_str(owner, "room"),
            )
            message_metadata = MessageMetadata(
                message_id=_require_str(metadata, "messageId"),
                thread_id=_optional_str(metadata, "threadId"),
                last_url=_optional_str(metadata, "lastUrl"),
            )
            delivery_room = _optional_str(owner, "deliveryRoom") or job_owner.room
        except (KeyError, TypeError) as e:
            raise CorruptRecord(job_id, str(e)) from e

        try:
            return cls(
                id=job_id,
                pattern=pattern,
                owner=job_owner,
                delivery_room=delivery_room,
                message_template=message_template,
                metadata=message_metadata,
                post_in_thread=post_in_thread,
            )
        except InvalidPattern as e:
            raise CorruptRecord(job_id, str(e)) from e


@dataclass(frozen=True)
class CallbackJob(Job):
    """A job that calls ``on_complete`` after each fire and on cancel.

    The callback is process-local; a synced job is always a plain ``Job``.
    """

    on_complete: Callable[[Job], None] = field(kw_only=True, compare=False)

    def complete(self) -> None:
        self.on_complete(self)


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value
