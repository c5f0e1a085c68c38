"""
Tests for error handling and resilience helpers.

Acceptance Criteria:
- Transient source failures are retried with backoff, then re-raised
- Non-transient failures are not retried
- A failing source degrades to an empty result instead of failing the request
"""
import pytest

pytestmark = pytest.mark.unit
from unittest.mock import MagicMock, patch

from api.services.resilience import (
    RetryConfig,
    SourceUnavailableError,
    TransientSourceError,
    graceful_degradation,
    is_retryable_status,
    retry_sync,
)

FAST = RetryConfig(max_retries=2, base_delay=0.01, retryable_exceptions=(TransientSourceError,))


class TestRetrySync:
    """Test sync retry decorator."""

    def test_succeeds_without_retry(self):
        """Should succeed on first attempt."""
        call_count = 0

        @retry_sync(FAST)
        def success_func():
            nonlocal call_count
            call_count += 1
            return "ok"

        assert success_func() == "ok"
        assert call_count == 1

    def test_retries_on_transient_failure(self):
        """Should retry on transient failures."""
        call_count = 0
        on_retry = MagicMock()

        @retry_sync(FAST, on_retry=on_retry)
        def flaky_func():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise TransientSourceError("clay", "502")
            return "ok"

        with patch("api.services.resilience.time.sleep") as sleep:
            assert flaky_func() == "ok"

        assert call_count == 2
        sleep.assert_called_once_with(0.01)
        on_retry.assert_called_once()

    def test_exhausts_retries(self):
        """Should raise after exhausting retries."""
        call_count = 0

        @retry_sync(FAST)
        def always_fails():
            nonlocal call_count
            call_count += 1
            raise TransientSourceError("clay", "502")

        with patch("api.services.resilience.time.sleep"):
            with pytest.raises(TransientSourceError):
                always_fails()

        assert call_count == 3  # 1 initial + 2 retries

    def test_non_retryable_raises_immediately(self):
        call_count = 0

        @retry_sync(FAST)
        def unauthorized():
            nonlocal call_count
            call_count += 1
            raise SourceUnavailableError("clay", "401")

        with pytest.raises(SourceUnavailableError):
            unauthorized()

        assert call_count == 1

    def test_backoff_capped(self):
        config = RetryConfig(max_retries=4, base_delay=1.0, max_delay=3.0, retryable_exceptions=(ValueError,))

        @retry_sync(config)
        def always_fails():
            raise ValueError("x")

        with patch("api.services.resilience.time.sleep") as sleep:
            with pytest.raises(ValueError):
                always_fails()

        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 3.0, 3.0]


class TestGracefulDegradation:

    def test_returns_result(self):
        @graceful_degradation("test source")
        def works():
            return ["a"]

        assert works() == ["a"]

    def test_unavailable_returns_fresh_fallback(self):
        @graceful_degradation("test source")
        def broken():
            raise SourceUnavailableError("test", "down")

        first = broken()
        first.append("mutated")
        assert broken() == []

    def test_unexpected_error_returns_fallback(self):
        @graceful_degradation("test source", fallback_factory=dict)
        def buggy():
            raise KeyError("x")

        assert buggy() == {}


class TestSourceUnavailableError:

    def test_message(self):
        e = SourceUnavailableError("imessage", "database not found")
        assert e.source == "imessage"
        assert e.message == "database not found"
        assert str(e) == "imessage: database not found"

    def test_transient_is_unavailable(self):
        assert issubclass(TransientSourceError, SourceUnavailableError)


class TestRetryableStatus:

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 429, 408])
    def test_retryable(self, status):
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [200, 400, 401, 403, 404, 501])
    def test_not_retryable(self, status):
        assert not is_retryable_status(status)
