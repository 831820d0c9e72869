"""Scheduling engine: one asyncio timer task per armed job.

All timers run on a single event loop. A job's next fire time is computed
only after its current delivery has been dispatched, so one job never fires
concurrently with itself. Fires of different jobs are independent.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from roomcron.scheduling.delivery import DeliveryReceipt, JobDispatcher
from roomcron.scheduling.errors import InThePast
from roomcron.scheduling.types import Job

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


DeliveredHook = Callable[["TimerHandle", DeliveryReceipt], None]
RetiredHook = Callable[["TimerHandle"], None]


@dataclass(eq=False)
class TimerHandle:
    """Live timer for one job.

    ``job`` is replaced by the owner when the job's metadata changes so the
    next fire sees it.
    """

    job: Job
    next_fire_at: datetime
    on_delivered: DeliveredHook | None = None
    on_retired: RetiredHook | None = None
    task: asyncio.Task | None = field(default=None, repr=False)
    firing: bool = False
    cancelled: bool = False
    fire_count: int = 0

    @property
    def armed(self) -> bool:
        return not self.cancelled and self.task is not None and not self.task.done()


class SchedulingEngine:
    """Arms and disarms job timers.

    Example:
        engine = SchedulingEngine(JobDispatcher(send))
        handle = engine.arm(job)
        ...
        engine.disarm(handle)
    """

    def __init__(
        self,
        dispatcher: JobDispatcher,
        clock: Clock | None = None,
    ):
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._handles: set[TimerHandle] = set()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def handles(self) -> frozenset[TimerHandle]:
        return frozenset(self._handles)

    def arm(
        self,
        job: Job,
        *,
        on_delivered: DeliveredHook | None = None,
        on_retired: RetiredHook | None = None,
    ) -> TimerHandle:
        """Start a timer for ``job``. Must be called with a running loop.

        Raises:
            InThePast: If a one-off job's instant is at or before now.
        """
        fire_at = job.next_fire(self._clock.now())
        if fire_at is None:
            raise InThePast(job.pattern)

        handle = TimerHandle(
            job=job,
            next_fire_at=fire_at,
            on_delivered=on_delivered,
            on_retired=on_retired,
        )
        handle.task = asyncio.create_task(
            self._run(handle), name=f"roomcron-job-{job.id}"
        )
        handle.task.add_done_callback(lambda _: self._handles.discard(handle))
        self._handles.add(handle)
        logger.info(
            "job_armed",
            extra={
                "schedule.job_id": job.id,
                "schedule.kind": job.kind.value,
                "schedule.next_fire": fire_at.isoformat(),
            },
        )
        return handle

    def disarm(self, handle: TimerHandle) -> None:
        """Stop a timer for good.

        A delivery already in flight is allowed to finish; nothing follows it.
        """
        if handle.cancelled:
            return
        handle.cancelled = True
        if handle.task is not None and not handle.firing:
            handle.task.cancel()
        logger.info(
            "job_disarmed",
            extra={"schedule.job_id": handle.job.id, "schedule.in_flight": handle.firing},
        )

    async def shutdown(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        tasks = [h.task for h in self._handles if h.task is not None]
        for handle in list(self._handles):
            handle.cancelled = True
            if handle.task is not None:
                handle.task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._handles.clear()

    async def _run(self, handle: TimerHandle) -> None:
        try:
            while not handle.cancelled:
                fire_at = handle.next_fire_at
                await self._sleep_until(fire_at)
                if handle.cancelled:
                    return

                await self._fire(handle)
                if handle.cancelled:
                    return

                # Occurrences missed during a slow delivery are skipped.
                after = max(fire_at, self._clock.now())
                next_fire = handle.job.next_fire(after)
                if next_fire is None:
                    self._retire(handle)
                    return
                handle.next_fire_at = next_fire
                logger.debug(
                    f"Job {handle.job.id} re-armed for {next_fire.isoformat()}"
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "job_timer_failed",
                extra={"schedule.job_id": handle.job.id, "error.message": str(e)},
                exc_info=True,
            )

    async def _sleep_until(self, when: datetime) -> None:
        while (remaining := (when - self._clock.now()).total_seconds()) > 0:
            await self._clock.sleep(remaining)

    async def _fire(self, handle: TimerHandle) -> None:
        job = handle.job
        logger.info(
            "job_firing",
            extra={
                "schedule.job_id": job.id,
                "schedule.message_preview": job.message_template[:50],
                "messaging.room": job.delivery_room,
            },
        )

        handle.firing = True
        receipt: DeliveryReceipt | None = None
        try:
            receipt = await self._dispatcher.dispatch(job)
        except Exception as e:
            logger.error(
                "job_delivery_failed",
                extra={"schedule.job_id": job.id, "error.message": str(e)},
            )
        finally:
            handle.firing = False
            handle.fire_count += 1

        if handle.cancelled:
            return

        if receipt is not None and job.is_recurring and handle.on_delivered:
            try:
                handle.on_delivered(handle, receipt)
            except Exception as e:
                logger.error(
                    "job_metadata_update_failed",
                    extra={"schedule.job_id": job.id, "error.message": str(e)},
                )

        try:
            handle.job.complete()
        except Exception as e:
            logger.error(
                "job_completion_callback_failed",
                extra={"schedule.job_id": job.id, "error.message": str(e)},
            )

    def _retire(self, handle: TimerHandle) -> None:
        handle.cancelled = True
        logger.info("job_retired", extra={"schedule.job_id": handle.job.id})
        if handle.on_retired:
            try:
                handle.on_retired(handle)
            except Exception as e:
                logger.error(
                    "job_retire_failed",
                    extra={"schedule.job_id": handle.job.id, "error.message": str(e)},
                )
