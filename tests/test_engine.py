"""Tests for the scheduling engine."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from roomcron.scheduling import (
    DeliveryError,
    DeliveryReceipt,
    InThePast,
    Job,
    JobDispatcher,
    MessageMetadata,
    RenderError,
    SchedulingEngine,
    TimerHandle,
)
from tests.conftest import (
    START,
    FakeClock,
    RecordingSender,
    make_metadata,
    make_owner,
    settle,
)

MONDAY_9AM = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def make_job(
    pattern: str = "0 9 * * 1",
    template: str = "standup",
    *,
    post_in_thread: bool = False,
    metadata: MessageMetadata | None = None,
) -> Job:
    return Job(
        id="1",
        pattern=pattern,
        owner=make_owner(),
        delivery_room="!general",
        message_template=template,
        metadata=metadata or make_metadata(),
        post_in_thread=post_in_thread,
    )


class TestArming:
    """Tests for arming and disarming timers."""

    @pytest.mark.asyncio
    async def test_arm_recurring_computes_next_fire(self, engine: SchedulingEngine):
        handle = engine.arm(make_job())

        assert handle.next_fire_at == MONDAY_9AM
        assert handle.armed
        assert handle in engine.handles

    @pytest.mark.asyncio
    async def test_arm_one_off_in_past_fails(self, engine: SchedulingEngine):
        past = (START - timedelta(minutes=5)).isoformat()
        with pytest.raises(InThePast):
            engine.arm(make_job(past))
        assert not engine.handles

    @pytest.mark.asyncio
    async def test_arm_one_off_at_now_fails(self, engine: SchedulingEngine):
        with pytest.raises(InThePast):
            engine.arm(make_job(START.isoformat()))

    @pytest.mark.asyncio
    async def test_disarm_pending_prevents_fire(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        handle = engine.arm(make_job())
        await settle()
        engine.disarm(handle)
        await clock.advance(to=MONDAY_9AM + timedelta(days=14))

        assert sender.calls == []
        assert not handle.armed
        assert handle.task is not None and handle.task.cancelled()

    @pytest.mark.asyncio
    async def test_disarm_twice_is_harmless(self, engine: SchedulingEngine):
        handle = engine.arm(make_job())
        engine.disarm(handle)
        engine.disarm(handle)
        assert handle.cancelled

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self, engine: SchedulingEngine):
        first = engine.arm(make_job())
        second = engine.arm(make_job("*/5 * * * *"))
        await engine.shutdown()

        assert not first.armed
        assert not second.armed
        assert not engine.handles


class TestFiring:
    """Tests for timer fires."""

    @pytest.mark.asyncio
    async def test_does_not_fire_early(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        engine.arm(make_job())
        await clock.advance(to=MONDAY_9AM - timedelta(minutes=1))
        assert sender.calls == []

    @pytest.mark.asyncio
    async def test_recurring_fires_and_rearms(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        delivered: list[DeliveryReceipt] = []
        handle = engine.arm(make_job(), on_delivered=lambda h, r: delivered.append(r))

        await clock.advance(to=MONDAY_9AM)

        assert sender.messages == ["standup"]
        assert delivered == [DeliveryReceipt(message_id="$event1", thread_id="$thread1")]
        assert handle.armed
        assert handle.next_fire_at == MONDAY_9AM + timedelta(days=7)

        await clock.advance(to=MONDAY_9AM + timedelta(days=7))
        assert sender.messages == ["standup", "standup"]
        assert handle.fire_count == 2

    @pytest.mark.asyncio
    async def test_one_off_fires_once_and_retires(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        retired: list[TimerHandle] = []
        delivered: list[DeliveryReceipt] = []
        job = make_job((START + timedelta(seconds=1)).isoformat(), "ping")
        handle = engine.arm(
            job,
            on_delivered=lambda h, r: delivered.append(r),
            on_retired=retired.append,
        )

        await clock.advance(timedelta(seconds=1))
        await clock.advance(timedelta(days=1))

        assert sender.messages == ["ping"]
        assert retired == [handle]
        assert delivered == []
        assert not handle.armed
        assert handle not in engine.handles

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_recurring_armed(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        sender.error = RuntimeError("adapter down")
        delivered: list[DeliveryReceipt] = []
        handle = engine.arm(make_job(), on_delivered=lambda h, r: delivered.append(r))

        await clock.advance(to=MONDAY_9AM)

        assert len(sender.calls) == 1
        assert delivered == []
        assert handle.armed
        assert handle.next_fire_at == MONDAY_9AM + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_delivery_failure_retires_one_off(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        sender.error = RuntimeError("adapter down")
        retired: list[TimerHandle] = []
        handle = engine.arm(
            make_job((START + timedelta(minutes=1)).isoformat()),
            on_retired=retired.append,
        )

        await clock.advance(timedelta(minutes=1))

        assert retired == [handle]
        assert not handle.armed

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_stop_timer(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        def explode(handle, receipt):
            raise RuntimeError("boom")

        handle = engine.arm(make_job(), on_delivered=explode)
        await clock.advance(to=MONDAY_9AM)

        assert handle.armed
        await clock.advance(to=MONDAY_9AM + timedelta(days=7))
        assert len(sender.calls) == 2

    @pytest.mark.asyncio
    async def test_one_job_failure_does_not_affect_others(
        self, clock: FakeClock, sender: RecordingSender
    ):
        async def flaky(room, owner, message, *, post_in_thread, thread_id):
            if message == "bad":
                raise RuntimeError("nope")
            return await sender(
                room, owner, message, post_in_thread=post_in_thread, thread_id=thread_id
            )

        engine = SchedulingEngine(JobDispatcher(flaky), clock=clock)
        try:
            engine.arm(make_job(template="bad"))
            engine.arm(make_job(template="good"))
            await clock.advance(to=MONDAY_9AM)
            assert sender.messages == ["good"]
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_during_delivery_lets_it_finish(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        sender.gate = asyncio.Event()
        delivered: list[DeliveryReceipt] = []
        handle = engine.arm(make_job(), on_delivered=lambda h, r: delivered.append(r))

        await clock.advance(to=MONDAY_9AM)
        assert handle.firing
        engine.disarm(handle)

        sender.gate.set()
        await settle()

        assert len(sender.calls) == 1
        assert delivered == []
        assert handle.task is not None and handle.task.done()
        assert not handle.task.cancelled()

        await clock.advance(to=MONDAY_9AM + timedelta(days=7))
        assert len(sender.calls) == 1

    @pytest.mark.asyncio
    async def test_no_overlapping_fires_of_same_job(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        sender.gate = asyncio.Event()
        handle = engine.arm(make_job("* * * * *"))

        # Many minutes pass while the first delivery hangs
        await clock.advance(timedelta(minutes=1))
        await clock.advance(timedelta(minutes=10))
        assert len(sender.calls) == 1

        sender.gate.set()
        await settle()
        assert handle.armed
        # Missed minutes are skipped, not replayed
        assert len(sender.calls) == 1
        assert handle.next_fire_at == START + timedelta(minutes=12)

    @pytest.mark.asyncio
    async def test_latest_job_used_for_next_fire(
        self, engine: SchedulingEngine, clock: FakeClock, sender: RecordingSender
    ):
        def write_back(handle: TimerHandle, receipt: DeliveryReceipt) -> None:
            handle.job = handle.job.with_metadata(
                MessageMetadata(message_id="$origin", thread_id=receipt.thread_id)
            )

        engine.arm(make_job(post_in_thread=True), on_delivered=write_back)
        await clock.advance(to=MONDAY_9AM)
        await clock.advance(to=MONDAY_9AM + timedelta(days=7))

        assert [c["thread_id"] for c in sender.calls] == [None, "$thread1"]


class TestDispatcher:
    """Tests for rendering and sending."""

    @pytest.mark.asyncio
    async def test_renders_template(self, sender: RecordingSender):
        dispatcher = JobDispatcher(sender, renderer=lambda t, job: t.upper())
        await dispatcher.dispatch(make_job())
        assert sender.messages == ["STANDUP"]

    @pytest.mark.asyncio
    async def test_render_failure_sends_raw_template(self, sender: RecordingSender):
        def broken(template: str, job: Job) -> str:
            raise RenderError("unknown placeholder")

        dispatcher = JobDispatcher(sender, renderer=broken)
        await dispatcher.dispatch(make_job(template="hello {{nope}}"))
        assert sender.messages == ["hello {{nope}}"]

    @pytest.mark.asyncio
    async def test_thread_id_only_when_threaded(self, sender: RecordingSender):
        dispatcher = JobDispatcher(sender)
        metadata = MessageMetadata(message_id="$origin", thread_id="$t0")

        await dispatcher.dispatch(make_job(metadata=metadata, post_in_thread=True))
        await dispatcher.dispatch(make_job(metadata=metadata, post_in_thread=False))

        assert [c["thread_id"] for c in sender.calls] == ["$t0", None]
        assert [c["post_in_thread"] for c in sender.calls] == [True, False]

    @pytest.mark.asyncio
    async def test_permalink_added(self, sender: RecordingSender):
        dispatcher = JobDispatcher(sender, server_name="example.org")
        receipt = await dispatcher.dispatch(make_job())
        assert receipt.url == "https://matrix.to/#/!general/$event1?via=example.org"

    @pytest.mark.asyncio
    async def test_sender_failure_is_delivery_error(self, sender: RecordingSender):
        sender.error = ConnectionError("gone")
        with pytest.raises(DeliveryError):
            await JobDispatcher(sender).dispatch(make_job())
