from __future__ import annotations

import pytest

from conftest import FakeChecker, FakeSink, FakeStore, make_domain, make_monitor
from watchpost.exceptions import ProbeError, ProbeTimeoutError
from watchpost.services.checker import CheckOutcome
from watchpost.services.job_queue import Job, JobKind
from watchpost.services.processor import CheckProcessor


def _job(subject) -> Job:
    return Job(id="test#1", kind=JobKind.SINGLE_CHECK, payload=subject.job_payload())


@pytest.mark.asyncio
async def test_successful_check_is_recorded() -> None:
    domain = make_domain("example.com")
    sink = FakeSink()
    processor = CheckProcessor(FakeStore([domain]), FakeChecker(), sink)

    result = await processor.handle(_job(domain))

    assert result.ok
    assert sink.results == [result]


@pytest.mark.asyncio
async def test_probe_timeout_becomes_timeout_result() -> None:
    monitor = make_monitor(1)
    checker = FakeChecker()
    checker.errors[monitor.ref] = ProbeTimeoutError("Request timeout after 30s")
    sink = FakeSink()
    processor = CheckProcessor(FakeStore([monitor]), checker, sink)

    result = await processor.handle(_job(monitor))

    assert result.outcome == CheckOutcome.TIMEOUT
    assert result.error == "Request timeout after 30s"
    assert sink.results == [result]


@pytest.mark.asyncio
async def test_probe_failure_keeps_status_code() -> None:
    monitor = make_monitor(1)
    checker = FakeChecker()
    checker.errors[monitor.ref] = ProbeError("HTTP 502", status_code=502)
    processor = CheckProcessor(FakeStore([monitor]), checker, FakeSink())

    result = await processor.handle(_job(monitor))

    assert result.outcome == CheckOutcome.FAILURE
    assert result.status_code == 502


@pytest.mark.asyncio
async def test_missing_or_inactive_subject_is_skipped() -> None:
    monitor = make_monitor(1)
    checker = FakeChecker()
    sink = FakeSink()

    processor = CheckProcessor(FakeStore([]), checker, sink)
    assert await processor.handle(_job(monitor)) is None

    processor = CheckProcessor(FakeStore([make_monitor(1, is_active=False)]), checker, sink)
    assert await processor.handle(_job(monitor)) is None

    assert checker.calls == []
    assert sink.results == []


@pytest.mark.asyncio
async def test_sink_errors_propagate_for_retry() -> None:
    monitor = make_monitor(1)

    class BrokenSink:
        async def record_result(self, subject, result):
            raise RuntimeError("database is locked")

    processor = CheckProcessor(FakeStore([monitor]), FakeChecker(), BrokenSink())

    with pytest.raises(RuntimeError):
        await processor.handle(_job(monitor))
