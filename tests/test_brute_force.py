"""Tests for failed-attempt counting and lockout across identifier spaces."""

from unittest.mock import patch

import pytest

from trustgate.service.brute_force import BruteForceGuard, IdentifierSpace, LoginGuards
from trustgate.storage.errors import BackendUnavailable


@pytest.fixture
def guards(backend):
    return LoginGuards.build(
        backend,
        attempt_window_seconds=3600,
        max_attempts=5,
        lock_duration_seconds=1800,
    )


class TestLockout:
    @pytest.mark.parametrize("space", list(IdentifierSpace))
    async def test_five_failures_do_not_lock_sixth_does(self, guards, space):
        guard = guards.for_space(space)
        for _ in range(5):
            await guard.record_failed_attempt("subject")
        assert not await guard.is_blocked("subject")

        assert await guard.record_failed_attempt("subject") == 6
        assert await guard.is_blocked("subject")

    async def test_lock_expires_after_duration(self, guards, clock):
        for _ in range(6):
            await guards.ip.record_failed_attempt("10.0.0.1")
        clock.advance(1799)
        assert await guards.ip.is_blocked("10.0.0.1")

        clock.advance(1)
        assert not await guards.ip.is_blocked("10.0.0.1")

    async def test_clear_unlocks_and_resets_counter(self, guards):
        for _ in range(6):
            await guards.device.record_failed_attempt("curl/8.0")

        await guards.device.clear_attempts("curl/8.0")

        assert not await guards.device.is_blocked("curl/8.0")
        assert await guards.device.record_failed_attempt("curl/8.0") == 1

    async def test_manual_lock_bypasses_counter(self, guards, backend):
        await guards.ip.lock("10.0.0.9")

        assert await guards.ip.is_blocked("10.0.0.9")
        assert await backend.get("failed_login:ip:10.0.0.9") is None
        assert await backend.ttl("blocked_ip:10.0.0.9") == 1800

    async def test_spaces_are_independent(self, guards):
        for _ in range(6):
            await guards.ip.record_failed_attempt("shared")

        assert await guards.ip.is_blocked("shared")
        assert not await guards.device.is_blocked("shared")
        assert not await guards.email.is_blocked("shared")


class TestCounterWindow:
    async def test_counter_window_starts_at_first_failure(self, guards, backend, clock):
        await guards.ip.record_failed_attempt("10.0.0.1")
        clock.advance(100)
        await guards.ip.record_failed_attempt("10.0.0.1")

        assert await backend.ttl("failed_login:ip:10.0.0.1") == 3500

    async def test_counter_resets_after_window(self, guards, clock):
        for _ in range(5):
            await guards.ip.record_failed_attempt("10.0.0.1")
        clock.advance(3600)

        assert await guards.ip.record_failed_attempt("10.0.0.1") == 1
        assert not await guards.ip.is_blocked("10.0.0.1")

    async def test_remaining_attempts(self, guards):
        assert await guards.email.remaining_attempts("a@example.com") == 5
        await guards.email.record_failed_attempt("a@example.com")
        await guards.email.record_failed_attempt("a@example.com")
        assert await guards.email.remaining_attempts("a@example.com") == 3


class TestEmailNormalization:
    async def test_email_identifiers_are_case_and_space_insensitive(self, guards, backend):
        for _ in range(6):
            await guards.email.record_failed_attempt("  Alice@Example.COM ")

        assert await guards.email.is_blocked("alice@example.com")
        assert await backend.exists("lock_email:alice@example.com")

    async def test_device_identifiers_are_not_normalized(self, guards):
        for _ in range(6):
            await guards.device.record_failed_attempt("Agent")
        assert not await guards.device.is_blocked("agent")


class TestBackendFailures:
    async def test_is_blocked_propagates_by_default(self, guards, backend):
        backend.fail_with()
        with pytest.raises(BackendUnavailable):
            await guards.ip.is_blocked("10.0.0.1")

    async def test_is_blocked_fail_open_reports_unblocked(self, guards, backend):
        await guards.ip.lock("10.0.0.1")
        backend.fail_with()

        with patch("trustgate.service.brute_force.logger") as mock_logger:
            assert await guards.ip.is_blocked("10.0.0.1", fail_open=True) is False
        mock_logger.error.assert_called_once()

    async def test_record_failed_attempt_propagates(self, backend):
        guard = BruteForceGuard(IdentifierSpace.IP, backend)
        backend.fail_with()
        with pytest.raises(BackendUnavailable):
            await guard.record_failed_attempt("10.0.0.1")
