"""Certificate trigger.

The completion engine calls ``attempt`` after every successful advance
without looking at the rate; eligibility is decided on the worker side
by ``check_eligibility``.  Rendering and storing the certificate belong
to the certificate service and are not done here.

Eligibility requires ``floor(completion_rate) == 100``.  The engine caps
the rate at 90, so through advance alone no student is ever eligible;
the last 10 points come from outside this service.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol, runtime_checkable

from progress_service.core.metrics import CERTIFICATE_ATTEMPTS
from progress_service.models.progress import ProgressRecord
from progress_service.services.task_queue import (
    CERTIFICATE_QUEUE,
    TaskQueue,
    task_queue,
)

logger = logging.getLogger(__name__)

CERTIFICATE_THRESHOLD = 100


@runtime_checkable
class CertificateTrigger(Protocol):
    async def attempt(
        self,
        student_id: str,
        course_id: str,
        completion_rate: float,
        student_name: str,
    ) -> None:
        """Request issuance.  Must not raise; failures are logged here."""
        ...


class QueuedCertificateTrigger:
    """Hands the attempt to the worker via the certificate_issuance queue."""

    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def attempt(
        self,
        student_id: str,
        course_id: str,
        completion_rate: float,
        student_name: str,
    ) -> None:
        try:
            task = await self._queue.enqueue(
                CERTIFICATE_QUEUE,
                {
                    "student_id": student_id,
                    "course_id": course_id,
                    "completion_rate": completion_rate,
                    "student_name": student_name,
                },
            )
        except Exception:
            CERTIFICATE_ATTEMPTS.labels(result="enqueue_failed").inc()
            logger.exception(
                "Certificate attempt not enqueued student=%s course=%s",
                student_id,
                course_id,
                extra={"student_id": student_id, "course_id": course_id},
            )
            return

        CERTIFICATE_ATTEMPTS.labels(result="enqueued").inc()
        logger.debug("Certificate attempt enqueued task=%s", task.id)


class NullCertificateTrigger:
    """Does nothing; for callers that must not issue certificates."""

    async def attempt(
        self,
        student_id: str,
        course_id: str,
        completion_rate: float,
        student_name: str,
    ) -> None:
        return None


def check_eligibility(record: ProgressRecord | None) -> bool:
    if record is None:
        return False
    return math.floor(record.completion_rate) == CERTIFICATE_THRESHOLD


certificate_trigger: CertificateTrigger = QueuedCertificateTrigger(task_queue)
