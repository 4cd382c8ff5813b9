"""
Tests for retry_with_backoff and RetryPolicy.
"""
import httpx
import pytest

from app.core.errors import CommerceAPIError, ReportingAPIError
from app.core.retry import RetryPolicy, is_transient, retry_with_backoff


class _Flaky:
    def __init__(self, failures, exc_factory, result="ok"):
        self.failures = failures
        self.exc_factory = exc_factory
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_factory()
        return self.result


class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy(retries=3, initial_delay_s=1.0, factor=2.0, max_delay_s=30.0)
        assert [policy.delay_for(k) for k in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(initial_delay_s=10.0, factor=10.0, max_delay_s=30.0)
        assert policy.delay_for(2) == 30.0


class TestIsTransient:

    def test_transport_errors_are_transient(self):
        assert is_transient(httpx.ConnectError("refused")) is True
        assert is_transient(httpx.ReadTimeout("slow")) is True

    def test_flagged_errors(self):
        assert is_transient(ReportingAPIError("5xx", retryable=True)) is True
        assert is_transient(CommerceAPIError("404", status_code=404)) is False
        assert is_transient(ValueError("nope")) is False


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, clock):
        fn = _Flaky(2, lambda: httpx.ConnectError("refused"))
        result = await retry_with_backoff(fn, policy=RetryPolicy(retries=3), clock=clock)
        assert result == "ok"
        assert fn.calls == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self, clock):
        fn = _Flaky(5, lambda: CommerceAPIError("bad request", status_code=400))
        with pytest.raises(CommerceAPIError):
            await retry_with_backoff(fn, policy=RetryPolicy(retries=3), clock=clock)
        assert fn.calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_gives_up_after_last_retry(self, clock):
        fn = _Flaky(10, lambda: ReportingAPIError("HTTP 503", status_code=503, retryable=True))
        with pytest.raises(ReportingAPIError, match="HTTP 503"):
            await retry_with_backoff(fn, policy=RetryPolicy(retries=3), clock=clock)
        assert fn.calls == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, clock):
        seen = []
        fn = _Flaky(1, lambda: httpx.ConnectError("refused"))
        await retry_with_backoff(
            fn,
            policy=RetryPolicy(retries=1),
            clock=clock,
            on_retry=lambda exc, attempt: seen.append(attempt),
        )
        assert seen == [1]
