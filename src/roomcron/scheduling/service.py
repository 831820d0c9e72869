"""Scheduling facade for the chat command layer.

The command layer parses chat text and calls one method per command with
primitive arguments; every method returns the reply to post.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from roomcron.config import RoomcronConfig
from roomcron.scheduling.delivery import JobDispatcher, MessageSender, TemplateRenderer
from roomcron.scheduling.engine import Clock, SchedulingEngine
from roomcron.scheduling.errors import NotFound, SchedulingError
from roomcron.scheduling.registry import JobRegistry, SyncReport
from roomcron.scheduling.store import BrainStore, JobStore, JsonFileBrain
from roomcron.scheduling.types import (
    InstantSchedule,
    Job,
    JobOwner,
    MessageMetadata,
    Namespace,
)
from roomcron.scheduling.visibility import (
    RequestContext,
    RoomOracle,
    VisibilityPolicy,
)

logger = logging.getLogger(__name__)


def format_when(job: Job) -> str:
    schedule = job.schedule
    if isinstance(schedule, InstantSchedule):
        return schedule.at.strftime("%a %b %d %Y %H:%M UTC")
    return f"`{job.pattern}`"


def format_jobs(jobs: Iterable[Job]) -> str:
    """Render jobs for a list reply. Returns an empty string for no jobs."""
    blocks = []
    for job in jobs:
        header = f"*{job.id}*: {format_when(job)} in {job.delivery_room}"
        if job.metadata.last_url:
            header += f" (last posted: {job.metadata.last_url})"
        quoted = "\n".join(f"> {line}" for line in job.message_template.splitlines())
        blocks.append(f"{header}\n{quoted or '>'}")
    return "\n".join(blocks)


class ScheduleService:
    """Create, list, update and cancel jobs on behalf of chat users.

    Known scheduling errors become their reply text; anything else is logged
    and answered with a generic failure.
    """

    def __init__(
        self,
        registry: JobRegistry,
        policy: VisibilityPolicy,
        namespace: Namespace,
    ):
        self._registry = registry
        self._policy = policy
        self._noun = namespace.noun

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    def start(self) -> SyncReport:
        """Re-arm persisted jobs. Call once the brain has loaded."""
        return self._registry.sync()

    def stop(self) -> None:
        self._registry.close()

    def schedule(
        self,
        context: RequestContext,
        *,
        user_name: str,
        pattern: str | datetime,
        message: str,
        message_id: str,
        thread_id: str | None = None,
        target_room: str | None = None,
        post_in_thread: bool = False,
    ) -> str:
        try:
            delivery_room = self._policy.resolve_delivery_room(context, target_room)
            job = self._registry.create(
                owner=JobOwner(id=context.user_id, name=user_name, room=context.room),
                delivery_room=delivery_room,
                pattern=pattern,
                message_template=message,
                metadata=MessageMetadata(message_id=message_id, thread_id=thread_id),
                post_in_thread=post_in_thread,
            )
        except SchedulingError as e:
            return e.reply
        except Exception as e:
            return self._failed("create", e)
        return f"{job.id}: {self._noun.capitalize()} created"

    def list_jobs(self, context: RequestContext, target: str | None = None) -> str:
        try:
            scope = self._policy.resolve_scope(context, target)
            jobs = self._policy.filter_jobs(self._registry.list(), scope)
        except SchedulingError as e:
            return e.reply
        except Exception as e:
            return self._failed("list", e)

        if not jobs:
            return f"No {self._noun}s have been scheduled"
        return (
            f"Showing scheduled {self._noun}s for {scope.label}:\n"
            f"===\n{format_jobs(jobs)}"
        )

    def update(self, context: RequestContext, job_id: str, message: str) -> str:
        try:
            self._policy.check_mutation(self._require(job_id), context)
            self._registry.update(job_id, message)
        except SchedulingError as e:
            return e.reply
        except Exception as e:
            return self._failed("update", e)
        return f"{self._noun.capitalize()} {job_id} updated"

    def cancel(self, context: RequestContext, job_id: str) -> str:
        try:
            self._policy.check_mutation(self._require(job_id), context)
            self._registry.cancel(job_id)
        except SchedulingError as e:
            return e.reply
        except Exception as e:
            return self._failed("cancel", e)
        return f"{self._noun.capitalize()} {job_id} canceled"

    def _require(self, job_id: str) -> Job:
        job = self._registry.get(job_id)
        if job is None:
            raise NotFound(job_id)
        return job

    def _failed(self, action: str, error: Exception) -> str:
        logger.error(
            f"schedule_{action}_failed",
            extra={"schedule.namespace": self._registry.namespace, "error.message": str(error)},
            exc_info=True,
        )
        return f"Something went wrong with this {self._noun} ({action})."


def create_schedule_service(
    config: RoomcronConfig,
    namespace: Namespace,
    *,
    sender: MessageSender,
    rooms: RoomOracle,
    renderer: TemplateRenderer | None = None,
    brain: BrainStore | None = None,
    engine: SchedulingEngine | None = None,
    clock: Clock | None = None,
) -> ScheduleService:
    """Create a fully-wired schedule service for one namespace.

    Pass the same ``engine`` when wiring reminders and schedules together so
    both run their timers on one engine. Call ``start()`` on the result from
    inside the running event loop.
    """
    if engine is None:
        dispatcher = JobDispatcher(
            sender,
            renderer=renderer,
            server_name=config.schedule.matrix_server_name,
        )
        engine = SchedulingEngine(dispatcher, clock=clock)
    if brain is None:
        brain = JsonFileBrain(config.storage.brain_dir)

    registry = JobRegistry(
        JobStore(brain, namespace),
        engine,
        max_jobs=config.schedule.max_jobs,
    )
    policy = VisibilityPolicy(
        rooms, deny_external_control=config.schedule.deny_external_control
    )
    return ScheduleService(registry, policy, namespace)
