import asyncio

import pytest

from tracker.services.base import BaseService
from tracker.utils.exceptions import (
    ConflictError, TransientStoreError, ValidationError
)


class Flaky:
    def __init__(self, failures, error_factory):
        self.failures = failures
        self.error_factory = error_factory
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error_factory()
        return "ok"


def test_transient_errors_are_retried():
    call = Flaky(2, lambda: TransientStoreError("save_match", "database is locked"))
    result = asyncio.run(BaseService(None).execute_with_retry(call, max_retries=3))
    assert result == "ok"
    assert call.attempts == 3


def test_transient_errors_surface_after_retries_exhausted():
    call = Flaky(5, lambda: TransientStoreError("save_match", "database is locked"))
    with pytest.raises(TransientStoreError):
        asyncio.run(BaseService(None).execute_with_retry(call, max_retries=3))
    assert call.attempts == 3


@pytest.mark.parametrize("error_factory", [
    lambda: ConflictError("Match 1 was modified concurrently"),
    lambda: ValidationError(["Tie scores are not allowed"], field="scores"),
])
def test_deterministic_errors_are_not_retried(error_factory):
    call = Flaky(1, error_factory)
    with pytest.raises((ConflictError, ValidationError)):
        asyncio.run(BaseService(None).execute_with_retry(call, max_retries=3))
    assert call.attempts == 1
