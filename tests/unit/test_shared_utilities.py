"""
Unit tests for the shared logging processors and retry helper.
"""

import pytest

from shared.logging import (
    add_request_context, bind_service, clear_context, redact_credentials,
    set_request_id, set_subject_context
)
from shared.retry import RetryConfig, RetryError, retry_on_exception


class TestLoggingProcessors:
    """Test cases for structlog processors."""

    @pytest.fixture(autouse=True)
    def reset_context(self):
        clear_context()
        yield
        clear_context()

    def test_request_context_is_attached(self):
        set_request_id("req-1")
        set_subject_context("auth0|user-1")

        event = add_request_context(None, "info", {"event": "Plan changed"})

        assert event["request_id"] == "req-1"
        assert event["subject_id"] == "auth0|user-1"

    def test_no_context_before_authentication(self):
        set_request_id("req-1")

        event = add_request_context(None, "info", {"event": "HTTP request"})

        assert "subject_id" not in event

    def test_request_id_is_minted_when_absent(self):
        assert set_request_id(None)
        assert set_request_id("") != ""

    def test_service_name_is_stamped(self):
        event = bind_service("api")(None, "info", {"event": "started"})

        assert event["service"] == "api"

    def test_credentials_are_redacted(self):
        event = redact_credentials(None, "warning", {
            "event": "Token verification failed",
            "reason": "token_expired",
            "kid": "key-1",
            "token": "eyJhbGciOi...",
            "authorization": "Bearer eyJhbGciOi...",
        })

        assert event["token"] == "[redacted]"
        assert event["authorization"] == "[redacted]"
        assert event["reason"] == "token_expired"
        assert event["kid"] == "key-1"


class TestRetry:
    """Test cases for retry_on_exception."""

    @pytest.fixture
    def config(self):
        return RetryConfig(max_attempts=3, base_delay=0, jitter=False)

    @pytest.mark.asyncio
    async def test_retries_listed_errors_then_succeeds(self, config):
        calls = []

        @retry_on_exception((ConnectionError,), config)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_raises_retry_error(self, config):
        @retry_on_exception((ConnectionError,), config)
        async def down():
            raise ConnectionError("reset")

        with pytest.raises(RetryError) as exc_info:
            await down()

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ConnectionError)

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, config):
        calls = []

        @retry_on_exception((ConnectionError,), config)
        async def broken():
            calls.append(1)
            raise ValueError("bad query")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1

    def test_backoff_is_capped(self):
        config = RetryConfig(base_delay=0.5, max_delay=1.0, jitter=False)

        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.0, 1.0]

    def test_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
