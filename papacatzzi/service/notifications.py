"""Background delivery of verification and reset emails.

Requests never wait on the mail transport. Jobs go onto a bounded queue that a
fixed pool of worker tasks drains. Each job gets a per-attempt deadline.
Transport faults and timeouts are retried with exponential backoff; a refusal
reported by the sender is final. Failed jobs are logged and dropped.
Users recover through the resend operation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from papacatzzi.config import Settings
from papacatzzi.logging import get_logger, hash_email
from papacatzzi.service.protocols import NotificationSender

logger = get_logger(__name__)

DEFAULT_WORKERS = 2
DEFAULT_QUEUE_SIZE = 1000
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_BACKOFF_SECONDS = 60.0


@dataclass
class NotificationJob:
    kind: str
    recipient: str
    send: Callable[[], bool]


class NotificationDispatcher:
    def __init__(
        self,
        sender: NotificationSender,
        *,
        workers: int = DEFAULT_WORKERS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.sender = sender
        self.workers = workers
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout_seconds = timeout_seconds
        self._queue: asyncio.Queue[NotificationJob] = asyncio.Queue(maxsize=queue_size)
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def from_settings(
        cls, sender: NotificationSender, settings: Settings
    ) -> "NotificationDispatcher":
        return cls(
            sender,
            workers=settings.notify_workers,
            queue_size=settings.notify_queue_size,
            max_retries=settings.notify_max_retries,
            backoff_seconds=settings.notify_backoff_seconds,
            timeout_seconds=settings.notify_timeout_seconds,
        )

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the worker tasks."""
        if self._tasks:
            logger.warning("notification_dispatcher_already_running")
            return
        self._tasks = [
            asyncio.create_task(self._worker(index)) for index in range(self.workers)
        ]
        logger.info("notification_dispatcher_started", workers=self.workers)

    async def stop(self) -> None:
        """Cancel the workers. Jobs still queued stay queued for ``drain``."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("notification_dispatcher_stopped", pending=self._queue.qsize())

    def send_verification_code(self, recipient: str, code: str) -> bool:
        return self._submit(
            NotificationJob(
                kind="verification_code",
                recipient=recipient,
                send=lambda: self.sender.send_verification_code(recipient, code),
            )
        )

    def send_templated(
        self, recipient: str, subject: str, template_key: str, data: dict[str, Any]
    ) -> bool:
        return self._submit(
            NotificationJob(
                kind=template_key,
                recipient=recipient,
                send=lambda: self.sender.send_templated(
                    recipient, subject, template_key, data
                ),
            )
        )

    def _submit(self, job: NotificationJob) -> bool:
        """Queue ``job`` without blocking. Returns ``False`` when the queue is full."""
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.error(
                "notification_dropped",
                kind=job.kind,
                email_hash=hash_email(job.recipient),
                reason="queue_full",
            )
            return False
        return True

    async def drain(self) -> int:
        """Deliver every queued job on the calling task.

        Used when no workers run (tests, one-off scripts). With workers
        running this waits for the queue to empty instead.
        """
        if self._tasks:
            await self._queue.join()
            return 0
        delivered = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return delivered
            try:
                if await self.deliver(job):
                    delivered += 1
            finally:
                self._queue.task_done()

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.deliver(job)
            except Exception as exc:  # keep the worker alive
                logger.error(
                    "notification_worker_error",
                    worker=index,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            finally:
                self._queue.task_done()

    async def deliver(self, job: NotificationJob) -> bool:
        """Send ``job``, retrying transport faults and timeouts.

        A sender that returns ``False`` has refused the message for good
        (bad credentials, rejected recipient), so that result is not retried.
        """
        email_hash = hash_email(job.recipient)
        last_error: Optional[str] = None
        for attempt in range(self.max_retries + 1):
            try:
                sent = await asyncio.wait_for(
                    asyncio.to_thread(job.send), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError:
                last_error = "timeout"
            except Exception as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if sent:
                    logger.info(
                        "notification_sent",
                        kind=job.kind,
                        email_hash=email_hash,
                        attempt=attempt + 1,
                    )
                    return True
                logger.error(
                    "notification_failed",
                    kind=job.kind,
                    email_hash=email_hash,
                    attempts=attempt + 1,
                    error="sender_refused",
                    permanent=True,
                )
                return False
            if attempt < self.max_retries:
                backoff = min(MAX_BACKOFF_SECONDS, self.backoff_seconds * (2**attempt))
                logger.warning(
                    "notification_retry",
                    kind=job.kind,
                    email_hash=email_hash,
                    attempt=attempt + 1,
                    backoff_seconds=backoff,
                    error=last_error,
                )
                await asyncio.sleep(backoff)
        logger.error(
            "notification_failed",
            kind=job.kind,
            email_hash=email_hash,
            attempts=self.max_retries + 1,
            error=last_error,
            permanent=False,
        )
        return False
