from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from watchpost.utils.db_utils import retry_on_lock


def _locked() -> OperationalError:
    return OperationalError("COMMIT", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _locked()
        return "committed"

    assert await retry_on_lock(flaky, base_delay=0.001) == "committed"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries() -> None:
    async def always_locked():
        raise _locked()

    with pytest.raises(OperationalError):
        await retry_on_lock(always_locked, max_retries=2, base_delay=0.001)


@pytest.mark.asyncio
async def test_other_errors_are_not_retried() -> None:
    calls = []

    async def broken():
        calls.append(1)
        raise OperationalError("SELECT", {}, Exception("no such table: monitors"))

    with pytest.raises(OperationalError):
        await retry_on_lock(broken, base_delay=0.001)
    assert len(calls) == 1
