import asyncio

import pytest

from core.exceptions import ExternalServiceError
from core.http.retry import is_transient_error, retry_async


@pytest.mark.asyncio
async def test_retry_async_retries_until_success() -> None:
    attempts = 0

    @retry_async(max_retries=2, retry_delay=0)
    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise asyncio.TimeoutError()
        return "ok"

    result = await flaky()
    assert result == "ok"
    assert attempts == 3


@pytest.mark.asyncio
async def test_retry_async_raises_after_exhaustion() -> None:
    attempts = 0

    @retry_async(max_retries=1, retry_delay=0)
    async def always_fail():
        nonlocal attempts
        attempts += 1
        raise asyncio.TimeoutError()

    with pytest.raises(asyncio.TimeoutError):
        await always_fail()

    assert attempts == 2


@pytest.mark.asyncio
async def test_retry_async_skips_permanent_errors() -> None:
    attempts = 0

    @retry_async(max_retries=3, retry_delay=0)
    async def bad_request():
        nonlocal attempts
        attempts += 1
        raise ExternalServiceError("Nominatim reverse error: 400", {"status": 400})

    with pytest.raises(ExternalServiceError):
        await bad_request()

    assert attempts == 1


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ExternalServiceError("busy", {"status": 503}), True),
        (ExternalServiceError("slow down", {"status": 429}), True),
        (ExternalServiceError("bad", {"status": 400}), False),
        (ValueError("nope"), False),
    ],
)
def test_is_transient_error(exc, expected) -> None:
    assert is_transient_error(exc) is expected
