"""
Tests for core.resilience module.
"""
import asyncio
import pytest

from core.exceptions import RateLimitError, TransientFetchError
from core.resilience import RetryConfig, gather_in_groups, retry_with_backoff

from conftest import RecordingSleep


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_delays_double(self):
        config = RetryConfig()
        assert [config.delay_for(attempt) for attempt in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_capped(self):
        config = RetryConfig(max_delay=5.0)
        assert config.delay_for(10) == 5.0


class TestRetryWithBackoff:
    """Tests for retry_with_backoff function."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        sleep = RecordingSleep()

        async def ok():
            return "done"

        assert await retry_with_backoff(ok, sleep=sleep) == "done"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        sleep = RecordingSleep()
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 3:
                raise TransientFetchError("fail")
            return "ok"

        result = await retry_with_backoff(
            flaky, retryable_exceptions=(TransientFetchError,), sleep=sleep
        )
        assert result == "ok"
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_three_retries_then_raises(self):
        """Four calls in total, waiting 1s, 2s and 4s; no fourth retry."""
        sleep = RecordingSleep()
        calls = 0

        async def always_limited():
            nonlocal calls
            calls += 1
            raise RateLimitError("429")

        with pytest.raises(RateLimitError):
            await retry_with_backoff(
                always_limited,
                config=RetryConfig(max_retries=3),
                retryable_exceptions=(TransientFetchError,),
                sleep=sleep,
            )
        assert calls == 4
        assert sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        sleep = RecordingSleep()

        async def broken():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_with_backoff(
                broken, retryable_exceptions=(TransientFetchError,), sleep=sleep
            )
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_budget(self):
        """max_retries=0 means exactly one attempt."""
        calls = 0

        async def fail():
            nonlocal calls
            calls += 1
            raise TransientFetchError("fail")

        with pytest.raises(TransientFetchError):
            await retry_with_backoff(
                fail, config=RetryConfig(max_retries=0), sleep=RecordingSleep()
            )
        assert calls == 1


class TestGatherInGroups:
    """Tests for gather_in_groups function."""

    @pytest.mark.asyncio
    async def test_keeps_input_order(self):
        async def value(n, delay):
            await asyncio.sleep(delay)
            return n

        factories = [lambda n=n: value(n, 0.01 * (5 - n)) for n in range(5)]
        results = await gather_in_groups(factories, group_size=3, pause=0, sleep=RecordingSleep())
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_pause_between_groups(self):
        sleep = RecordingSleep()

        async def one():
            return 1

        await gather_in_groups([one] * 7, group_size=3, pause=0.5, sleep=sleep)
        assert sleep.delays == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        """At most group_size factories run at once."""
        running = 0
        peak = 0

        async def tracked():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await gather_in_groups([tracked] * 8, group_size=3, pause=0, sleep=RecordingSleep())
        assert peak == 3

    @pytest.mark.asyncio
    async def test_exceptions_returned_in_place(self):
        async def ok():
            return "ok"

        async def fail():
            raise TransientFetchError("down")

        results = await gather_in_groups([ok, fail, ok], sleep=RecordingSleep())
        assert results[0] == "ok"
        assert isinstance(results[1], TransientFetchError)
        assert results[2] == "ok"
