"""Check processor - runs a queued check job against its subject."""
import logging
from datetime import datetime
from typing import Optional, Protocol

from ..exceptions import ProbeError
from .checker import CheckResult, CheckerService
from .job_queue import Job
from .subjects import Subject, SubjectStore, ref_from_payload

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    """Receives every probe result."""

    async def record_result(self, subject: Subject, result: CheckResult) -> None:
        ...


class CheckProcessor:
    """Processor bound to every job queue.

    Probe failures become failed check results; anything else (store or
    sink errors) propagates so the queue retries the job.
    """

    def __init__(self, store: SubjectStore, checker: CheckerService, sink: ResultSink):
        self.store = store
        self.checker = checker
        self.sink = sink

    async def handle(self, job: Job) -> Optional[CheckResult]:
        ref = ref_from_payload(job.payload)
        subject = await self.store.get(ref)
        if subject is None or not subject.is_active:
            logger.warning(f"Subject {ref} not found or inactive, skipping job {job.id}")
            return None

        logger.debug(f"Processing {job.kind.value} job {job.id} for {ref}")
        start = datetime.now()
        try:
            result = await self.checker.execute(subject)
        except ProbeError as e:
            elapsed = int((datetime.now() - start).total_seconds() * 1000)
            result = CheckResult.from_error(ref.key, e, response_time_ms=elapsed)

        await self.sink.record_result(subject, result)

        if result.ok:
            logger.info(f"Check completed for {ref}: {result.outcome.value} ({result.response_time_ms}ms)")
        else:
            logger.warning(f"Check completed for {ref}: {result.outcome.value} - {result.error}")
        return result
