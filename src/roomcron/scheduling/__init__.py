"""Scheduling subsystem: one-off and recurring chat messages.

Public API:
- JobRegistry: Live jobs of one namespace (create/list/update/cancel/sync)
- SchedulingEngine: asyncio timers that fire jobs
- JobStore: Persists jobs into a brain namespace
- VisibilityPolicy: Room visibility rules for listing and mutation
- ScheduleService: Facade the chat command layer calls
- create_schedule_service: Wires a service from RoomcronConfig

Types:
- Job / CallbackJob: A scheduled message
- JobOwner, MessageMetadata: Job value objects
- Namespace: "reminders" vs "schedules" brain keys
"""

from roomcron.scheduling.delivery import (
    DeliveryReceipt,
    JobDispatcher,
    MessageSender,
    TemplateRenderer,
    url_for,
)
from roomcron.scheduling.engine import Clock, SchedulingEngine, SystemClock, TimerHandle
from roomcron.scheduling.errors import (
    CorruptRecord,
    DeliveryError,
    InThePast,
    InvalidPattern,
    ListingDenied,
    MutationDenied,
    NotFound,
    PersistenceError,
    RenderError,
    SchedulingError,
    TooManyJobs,
)
from roomcron.scheduling.registry import JobRegistry, SyncReport
from roomcron.scheduling.service import (
    ScheduleService,
    create_schedule_service,
    format_jobs,
)
from roomcron.scheduling.store import BrainStore, JobStore, JsonFileBrain, MemoryBrain
from roomcron.scheduling.types import (
    CallbackJob,
    CronSchedule,
    InstantSchedule,
    Job,
    JobKind,
    JobOwner,
    MessageMetadata,
    Namespace,
    classify,
)
from roomcron.scheduling.visibility import (
    ListScope,
    RequestContext,
    RoomOracle,
    VisibilityPolicy,
)

__all__ = [
    "BrainStore",
    "CallbackJob",
    "Clock",
    "CorruptRecord",
    "CronSchedule",
    "DeliveryError",
    "DeliveryReceipt",
    "InThePast",
    "InstantSchedule",
    "InvalidPattern",
    "Job",
    "JobDispatcher",
    "JobKind",
    "JobOwner",
    "JobRegistry",
    "JobStore",
    "JsonFileBrain",
    "ListScope",
    "ListingDenied",
    "MemoryBrain",
    "MessageMetadata",
    "MessageSender",
    "MutationDenied",
    "Namespace",
    "NotFound",
    "PersistenceError",
    "RenderError",
    "RequestContext",
    "RoomOracle",
    "ScheduleService",
    "SchedulingEngine",
    "SchedulingError",
    "SyncReport",
    "SystemClock",
    "TemplateRenderer",
    "TimerHandle",
    "TooManyJobs",
    "VisibilityPolicy",
    "classify",
    "create_schedule_service",
    "format_jobs",
    "url_for",
]
