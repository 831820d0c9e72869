"""Room-scoped visibility of jobs.

Decides which jobs a requester may list, update or cancel. Denials raise
with a reply for the requester, so a refusal is never mistaken for an empty
list. Replies never echo a room name the requester is not allowed to see.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from roomcron.scheduling.errors import ListingDenied, MutationDenied
from roomcron.scheduling.types import Job

logger = logging.getLogger(__name__)

SCOPE_ALL = "all"

UNKNOWN_ROOM_REPLY = "Sorry, I'm not in that room - or maybe you mistyped?"


class RoomOracle(Protocol):
    """Adapter-specific knowledge about rooms."""

    def resolve_room(self, name_or_id: str) -> str | None: ...

    def is_non_public(self, room_id: str) -> bool: ...

    def public_joined_room_ids(self) -> set[str]: ...

    def is_bot_present(self, room_id: str, requester_room: str) -> bool: ...


@dataclass(frozen=True)
class RequestContext:
    """Who is asking, and from where.

    For direct messages ``room`` is the DM channel id.
    """

    user_id: str
    room: str
    is_direct_message: bool = False


@dataclass(frozen=True)
class ListScope:
    """Resolved listing scope."""

    room_ids: frozenset[str]
    label: str
    owner_id: str | None = None

    def allows(self, job: Job) -> bool:
        if job.delivery_room not in self.room_ids:
            return False
        return self.owner_id is None or job.owner.id == self.owner_id


class VisibilityPolicy:
    """Applies room visibility rules for listing and mutation."""

    def __init__(self, rooms: RoomOracle, *, deny_external_control: bool = False):
        """Initialize the policy.

        Args:
            rooms: Room oracle for the active chat adapter.
            deny_external_control: Restrict every request to the requester's
                own room, ignoring explicit room arguments.
        """
        self._rooms = rooms
        self._deny_external_control = deny_external_control

    def resolve_scope(self, context: RequestContext, target: str | None = None) -> ListScope:
        """Work out which rooms a listing request covers.

        Raises:
            ListingDenied: If the target room is unknown, lacks the bot, or is
                non-public and the requester is elsewhere.
        """
        target = (target or "").strip()
        owner_id = context.user_id if context.is_direct_message else None

        if not target or self._deny_external_control:
            return ListScope(
                room_ids=frozenset({context.room}),
                label="THIS room",
                owner_id=owner_id,
            )

        if target.lower() == SCOPE_ALL:
            room_ids: set[str] = set(self._rooms.public_joined_room_ids())
            label = "all public rooms"
            if not context.is_direct_message and self._rooms.is_non_public(
                context.room
            ):
                room_ids.add(context.room)
                label = "THIS room AND all public rooms"
            return ListScope(
                room_ids=frozenset(room_ids), label=label, owner_id=owner_id
            )

        room_id = self._rooms.resolve_room(target)
        if room_id is None or not self._rooms.is_bot_present(room_id, context.room):
            logger.info(
                "listing_denied_unknown_room",
                extra={"messaging.user_id": context.user_id},
            )
            raise ListingDenied(
                "Target room unknown or bot absent", reply=UNKNOWN_ROOM_REPLY
            )
        if self._rooms.is_non_public(room_id) and context.room != room_id:
            logger.info(
                "listing_denied_private_room",
                extra={"messaging.user_id": context.user_id},
            )
            raise ListingDenied(
                "Non-public room listed from outside", reply=UNKNOWN_ROOM_REPLY
            )

        return ListScope(
            room_ids=frozenset({room_id}),
            label=f"the {target} room",
            owner_id=owner_id,
        )

    def resolve_delivery_room(
        self, context: RequestContext, target: str | None = None
    ) -> str:
        """Room a new job posts to. Defaults to the requester's room.

        Raises:
            MutationDenied: If jobs for other rooms are disallowed, or the
                target room is unknown or not visible to the requester.
        """
        target = (target or "").strip()
        if not target:
            return context.room
        if self._deny_external_control:
            raise MutationDenied(
                "Scheduling for another room is disabled",
                reply="Creating scheduled messages for another room is not allowed.",
            )

        room_id = self._rooms.resolve_room(target)
        if (
            room_id is None
            or not self._rooms.is_bot_present(room_id, context.room)
            or (self._rooms.is_non_public(room_id) and context.room != room_id)
        ):
            raise MutationDenied(
                "Target room unknown or not visible", reply=UNKNOWN_ROOM_REPLY
            )
        return room_id

    def filter_jobs(self, jobs: Iterable[Job], scope: ListScope) -> list[Job]:
        return [job for job in jobs if scope.allows(job)]

    def check_mutation(self, job: Job, context: RequestContext) -> None:
        """Check that the requester may update or cancel ``job``.

        Raises:
            MutationDenied: If the job belongs to another room under
                ``deny_external_control``, or to another user in a DM.
        """
        if context.is_direct_message and job.owner.id != context.user_id:
            raise MutationDenied(
                f"Job {job.id} is owned by another user",
                reply=f"Job {job.id} does not exist.",
            )
        if self._deny_external_control and job.delivery_room != context.room:
            raise MutationDenied(
                f"Job {job.id} belongs to another room",
                reply="Changing scheduled messages for another room is not allowed.",
            )
