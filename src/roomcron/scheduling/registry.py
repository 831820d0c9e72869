"""Job registry: the live jobs of one namespace.

A job id is registered iff the job is armed. Every mutation writes the
store first and only then touches the engine and the in-memory map, so a
store failure leaves both unchanged. Registry methods are synchronous and
run on the engine's event loop, which serializes them.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from roomcron.scheduling.delivery import DeliveryReceipt
from roomcron.scheduling.engine import SchedulingEngine, TimerHandle
from roomcron.scheduling.errors import (
    CorruptRecord,
    InThePast,
    InvalidPattern,
    NotFound,
    PersistenceError,
    TooManyJobs,
)
from roomcron.scheduling.store import JobStore
from roomcron.scheduling.types import (
    CallbackJob,
    Job,
    JobOwner,
    MessageMetadata,
    Schedule,
    classify,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_JOBS = 10000

# Random draws before falling back to scanning for a free id
_RANDOM_ID_ATTEMPTS = 32


def id_sort_key(job_id: str) -> tuple[int, int, str]:
    """Numeric ids in numeric order, anything else after them."""
    if job_id.isdigit():
        return (0, int(job_id), job_id)
    return (1, 0, job_id)


@dataclass
class SyncReport:
    """Outcome of a ``JobRegistry.sync`` run."""

    armed: list[str] = field(default_factory=list)
    already_live: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    corrupt: list[str] = field(default_factory=list)


class JobRegistry:
    """Authoritative map from job id to its live timer.

    Construction arms nothing; call ``sync()`` at startup to re-arm the
    persisted jobs and ``close()`` at shutdown.
    """

    def __init__(
        self,
        store: JobStore,
        engine: SchedulingEngine,
        *,
        max_jobs: int = DEFAULT_MAX_JOBS,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._engine = engine
        self._max_jobs = max_jobs
        self._random = rng or random.Random()
        self._entries: dict[str, TimerHandle] = {}

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def namespace(self) -> str:
        return self._store.namespace

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, job_id: str) -> Job | None:
        handle = self._entries.get(job_id)
        return handle.job if handle else None

    def handle(self, job_id: str) -> TimerHandle | None:
        return self._entries.get(job_id)

    def list(self, predicate: Callable[[Job], bool] | None = None) -> list[Job]:
        """Live jobs matching ``predicate``, ordered by id."""
        jobs = [h.job for h in self._entries.values()]
        if predicate is not None:
            jobs = [job for job in jobs if predicate(job)]
        return sorted(jobs, key=lambda job: id_sort_key(job.id))

    def create(
        self,
        owner: JobOwner,
        delivery_room: str | None,
        pattern: str | datetime,
        message_template: str,
        metadata: MessageMetadata,
        post_in_thread: bool = False,
        on_complete: Callable[[Job], None] | None = None,
    ) -> Job:
        """Validate, persist and arm a new job.

        Raises:
            InvalidPattern: If the pattern is not a cron expression or instant.
            InThePast: If a one-off instant is not after now.
            TooManyJobs: If the namespace has no free id.
            PersistenceError: If the job could not be saved.
        """
        schedule = classify(pattern)
        pattern_text = (
            pattern if isinstance(pattern, str) else schedule.at.isoformat()
        )
        self._first_fire(schedule, pattern_text)

        job_id = self._allocate_id()
        fields: dict[str, Any] = {
            "id": job_id,
            "pattern": pattern_text,
            "owner": owner,
            "delivery_room": delivery_room or owner.room,
            "message_template": message_template,
            "metadata": metadata,
            "post_in_thread": post_in_thread,
        }
        job: Job = (
            CallbackJob(**fields, on_complete=on_complete)
            if on_complete is not None
            else Job(**fields)
        )

        self._store.save(job)
        try:
            self._entries[job_id] = self._arm(job)
        except Exception:
            self._store.delete(job_id)
            raise

        logger.info(
            "job_created",
            extra={
                "schedule.namespace": self.namespace,
                "schedule.job_id": job_id,
                "schedule.kind": job.kind.value,
                "messaging.room": job.delivery_room,
                "messaging.user_id": owner.id,
            },
        )
        return job

    def cancel(self, job_id: str) -> Job:
        """Disarm and forget a job.

        Raises:
            NotFound: If no live job has this id.
            PersistenceError: If the record could not be deleted. The job
                stays armed.
        """
        handle = self._entries.get(job_id)
        if handle is None:
            raise NotFound(job_id)

        self._store.delete(job_id)
        self._engine.disarm(handle)
        del self._entries[job_id]

        job = handle.job
        try:
            job.complete()
        except Exception as e:
            logger.error(
                "job_completion_callback_failed",
                extra={"schedule.job_id": job_id, "error.message": str(e)},
            )
        logger.info(
            "job_canceled",
            extra={"schedule.namespace": self.namespace, "schedule.job_id": job_id},
        )
        return job

    def update(self, job_id: str, message_template: str) -> Job:
        """Replace a job's message, keeping its id, pattern, owner and metadata.

        The old timer is disarmed before the replacement is armed.

        Raises:
            NotFound: If no live job has this id.
            InThePast: If a one-off job's instant has passed meanwhile.
            PersistenceError: If the replacement could not be saved.
        """
        handle = self._entries.get(job_id)
        if handle is None:
            raise NotFound(job_id)

        replacement = handle.job.with_template(message_template)
        self._first_fire(replacement.schedule, replacement.pattern)

        self._store.save(replacement)
        self._engine.disarm(handle)
        self._entries[job_id] = self._arm(replacement)

        logger.info(
            "job_updated",
            extra={"schedule.namespace": self.namespace, "schedule.job_id": job_id},
        )
        return replacement

    def sync(self, records: Mapping[str, Any] | None = None) -> SyncReport:
        """Arm every persisted job that is not live yet.

        Safe to run repeatedly. Corrupt records are skipped; one-off records
        whose instant has passed are dropped from the store.

        Args:
            records: Persisted records keyed by id. Read from the store if
                omitted.
        """
        if records is None:
            records = self._store.load()

        report = SyncReport()
        for job_id in sorted(records, key=id_sort_key):
            if job_id in self._entries:
                report.already_live.append(job_id)
                continue

            try:
                job = Job.deserialize(job_id, records[job_id])
                self._first_fire(job.schedule, job.pattern)
            except (CorruptRecord, InvalidPattern) as e:
                logger.warning(
                    "corrupt_job_record_skipped",
                    extra={
                        "schedule.namespace": self.namespace,
                        "schedule.job_id": job_id,
                        "error.message": str(e),
                    },
                )
                report.corrupt.append(job_id)
                continue
            except InThePast:
                logger.warning(
                    "expired_job_dropped",
                    extra={
                        "schedule.namespace": self.namespace,
                        "schedule.job_id": job_id,
                        "schedule.pattern": job.pattern,
                    },
                )
                self._forget(job_id)
                report.expired.append(job_id)
                continue

            self._entries[job_id] = self._arm(job)
            report.armed.append(job_id)

        logger.info(
            "jobs_synced",
            extra={
                "schedule.namespace": self.namespace,
                "sync.armed": len(report.armed),
                "sync.already_live": len(report.already_live),
                "sync.expired": len(report.expired),
                "sync.corrupt": len(report.corrupt),
            },
        )
        return report

    def close(self) -> None:
        """Disarm every job without touching the store."""
        for handle in self._entries.values():
            self._engine.disarm(handle)
        self._entries.clear()

    def _arm(self, job: Job) -> TimerHandle:
        return self._engine.arm(
            job,
            on_delivered=self._on_delivered,
            on_retired=self._on_retired,
        )

    def _first_fire(self, schedule: Schedule, pattern: str) -> datetime:
        try:
            fire_at = schedule.next_fire(self._engine.clock.now())
        except Exception:
            # croniter accepts some expressions that never match (Feb 31st)
            raise InvalidPattern(pattern) from None
        if fire_at is None:
            raise InThePast(pattern)
        return fire_at

    def _allocate_id(self) -> str:
        used = set(self._entries) | set(self._store.load())
        for _ in range(_RANDOM_ID_ATTEMPTS):
            candidate = str(self._random.randrange(self._max_jobs))
            if candidate not in used:
                return candidate
        free = [str(i) for i in range(self._max_jobs) if str(i) not in used]
        if not free:
            raise TooManyJobs(self._max_jobs)
        return self._random.choice(free)

    def _on_delivered(self, handle: TimerHandle, receipt: DeliveryReceipt) -> None:
        job = handle.job
        if self._entries.get(job.id) is not handle:
            return

        metadata = MessageMetadata(
            message_id=job.metadata.message_id,
            thread_id=receipt.thread_id or job.metadata.thread_id,
            last_url=receipt.url or job.metadata.last_url,
        )
        if metadata == job.metadata:
            return

        updated = job.with_metadata(metadata)
        handle.job = updated
        try:
            self._store.save(updated)
        except PersistenceError as e:
            logger.warning(
                "job_metadata_not_persisted",
                extra={"schedule.job_id": job.id, "error.message": str(e)},
            )

    def _on_retired(self, handle: TimerHandle) -> None:
        job_id = handle.job.id
        if self._entries.get(job_id) is not handle:
            return
        del self._entries[job_id]
        self._forget(job_id)

    def _forget(self, job_id: str) -> None:
        try:
            self._store.delete(job_id)
        except PersistenceError as e:
            logger.warning(
                "job_record_not_deleted",
                extra={"schedule.job_id": job_id, "error.message": str(e)},
            )
