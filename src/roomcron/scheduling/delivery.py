"""Delivery boundary between the scheduler and the chat adapter."""

import logging
from dataclasses import dataclass
from typing import Protocol

from roomcron.scheduling.errors import DeliveryError
from roomcron.scheduling.types import Job, JobOwner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryReceipt:
    """What the adapter reports back after posting a message."""

    message_id: str
    thread_id: str | None = None
    url: str | None = None


class TemplateRenderer(Protocol):
    """Resolves placeholders in a message template at fire time."""

    def __call__(self, template: str, job: Job) -> str: ...


class MessageSender(Protocol):
    """Posts a rendered message to a room. Returns the delivery receipt."""

    async def __call__(
        self,
        delivery_room: str,
        owner: JobOwner,
        message: str,
        *,
        post_in_thread: bool,
        thread_id: str | None,
    ) -> DeliveryReceipt: ...


def url_for(room_id: str, server_name: str, event_id: str) -> str:
    """Permalink for a posted Matrix event."""
    return f"https://matrix.to/#/{room_id}/{event_id}?via={server_name}"


class JobDispatcher:
    """Renders a job's template and hands the message to the sender.

    Rendering failures never drop a message: the raw template is sent instead.
    """

    def __init__(
        self,
        sender: MessageSender,
        renderer: TemplateRenderer | None = None,
        server_name: str | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            sender: Adapter send function.
            renderer: Optional template renderer.
            server_name: Matrix server used to build a permalink when the
                receipt comes back without one.
        """
        self._sender = sender
        self._renderer = renderer
        self._server_name = server_name

    def render(self, job: Job) -> str:
        if self._renderer is None:
            return job.message_template
        try:
            return self._renderer(job.message_template, job)
        except Exception as e:
            logger.error(
                "template_render_failed",
                extra={"schedule.job_id": job.id, "error.message": str(e)},
            )
            return job.message_template

    async def dispatch(self, job: Job) -> DeliveryReceipt:
        """Deliver one occurrence of ``job``.

        Raises:
            DeliveryError: If the sender fails.
        """
        message = self.render(job)
        thread_id = job.metadata.thread_id if job.post_in_thread else None
        try:
            receipt = await self._sender(
                job.delivery_room,
                job.owner,
                message,
                post_in_thread=job.post_in_thread,
                thread_id=thread_id,
            )
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"Delivery of job {job.id} failed: {e}") from e

        if receipt.url is None and self._server_name:
            receipt = DeliveryReceipt(
                message_id=receipt.message_id,
                thread_id=receipt.thread_id,
                url=url_for(job.delivery_room, self._server_name, receipt.message_id),
            )

        logger.info(
            "job_delivered",
            extra={
                "schedule.job_id": job.id,
                "messaging.room": job.delivery_room,
                "messaging.message_id": receipt.message_id,
                "messaging.thread_id": receipt.thread_id,
            },
        )
        return receipt
