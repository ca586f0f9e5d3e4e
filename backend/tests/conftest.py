from __future__ import annotations

import os
import tempfile

# Settings and the database engine are built at import time
os.environ.setdefault("DATA_PATH", tempfile.mkdtemp(prefix="watchpost-tests-"))
# Keeps the first check of API-created subjects pending while a test inspects it
os.environ.setdefault("IMMEDIATE_CHECK_DELAY_SECONDS", "30")

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

from watchpost.config import Settings
from watchpost.database import Base, async_session, engine, init_db
from watchpost.services.checker import CheckOutcome, CheckResult
from watchpost.services.pacer import Pacer
from watchpost.services.processor import CheckProcessor
from watchpost.services.queue_backend import SchedulerBackend
from watchpost.services.queue_registry import QueueRegistry
from watchpost.services.scheduler import SchedulerService, queue_factory_for
from watchpost.services.subjects import Subject, SubjectKind, SubjectRef, creation_order

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def make_monitor(monitor_id: int, interval: int = 60, created_offset: int = 0, **kwargs) -> Subject:
    return Subject(
        ref=SubjectRef.monitor(monitor_id),
        record_id=monitor_id,
        probe_type=kwargs.pop("probe_type", "https"),
        target=kwargs.pop("target", f"https://service-{monitor_id}.example.com"),
        check_interval=interval,
        created_at=BASE_TIME + timedelta(minutes=created_offset),
        **kwargs,
    )


def make_domain(name: str, record_id: int = 1, interval: int = 3600, created_offset: int = 0, **kwargs) -> Subject:
    return Subject(
        ref=SubjectRef.domain(name),
        record_id=record_id,
        probe_type="whois",
        target=name,
        check_interval=interval,
        created_at=BASE_TIME + timedelta(minutes=created_offset),
        **kwargs,
    )


def make_settings(**overrides) -> Settings:
    values = dict(
        immediate_check_delay_seconds=0.05,
        pace_min_delay_ms=1000,
        pace_max_delay_ms=2000,
        job_attempts=3,
        job_backoff_seconds=0.01,
        failed_job_alert_threshold=100,
        expiry_alert_days=30,
    )
    values.update(overrides)
    return Settings(**values)


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    """Poll until predicate() is true or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class FakeStore:
    def __init__(self, subjects: Iterable[Subject] = ()):
        self.subjects: Dict[SubjectRef, Subject] = {s.ref: s for s in subjects}

    def put(self, subject: Subject) -> None:
        self.subjects[subject.ref] = subject

    def delete(self, ref: SubjectRef) -> None:
        self.subjects.pop(ref, None)

    async def get(self, ref: SubjectRef) -> Optional[Subject]:
        return self.subjects.get(ref)

    async def list_active(self, kind: Optional[SubjectKind] = None) -> List[Subject]:
        active = [
            s for s in self.subjects.values()
            if s.is_active and (kind is None or s.kind == kind)
        ]
        return sorted(active, key=creation_order)


class FakeChecker:
    def __init__(self):
        self.calls: List[SubjectRef] = []
        self.errors: Dict[SubjectRef, Exception] = {}

    async def execute(self, subject: Subject) -> CheckResult:
        self.calls.append(subject.ref)
        error = self.errors.get(subject.ref)
        if error:
            raise error
        return CheckResult(subject_key=subject.ref.key, outcome=CheckOutcome.SUCCESS, response_time_ms=5)


class FakeSink:
    def __init__(self):
        self.results: List[CheckResult] = []

    async def record_result(self, subject: Subject, result: CheckResult) -> None:
        self.results.append(result)


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@dataclass
class Harness:
    service: SchedulerService
    store: FakeStore
    checker: FakeChecker
    sink: FakeSink
    sleep: RecordingSleep


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def db():
    """Fresh tables in the test database; rows are wiped afterwards."""
    await init_db()
    yield async_session
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
    await engine.dispose()


@pytest_asyncio.fixture
async def backend():
    backend = SchedulerBackend()
    await backend.connect()
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def make_harness():
    created: List[SchedulerService] = []

    async def factory(subjects: Iterable[Subject] = (), start: bool = True, **overrides) -> Harness:
        config = make_settings(**overrides)
        store = FakeStore(subjects)
        checker = FakeChecker()
        sink = FakeSink()
        sleep = RecordingSleep()

        backend = SchedulerBackend(config.queue_backend_url)
        processor = CheckProcessor(store, checker, sink)
        registry = QueueRegistry(queue_factory_for(backend, processor, config))
        pacer = Pacer(config.pace_min_delay_ms, config.pace_max_delay_ms, rng=random.Random(7), sleep=sleep)
        service = SchedulerService(backend, registry, store, pacer, config=config)
        created.append(service)

        if start:
            await service.start()
        return Harness(service=service, store=store, checker=checker, sink=sink, sleep=sleep)

    yield factory

    for service in created:
        await service.stop()
