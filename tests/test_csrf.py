"""Tests for per-session anti-forgery tokens."""

import pytest

from trustgate.service.csrf import CsrfGuard


@pytest.fixture
def csrf(backend):
    return CsrfGuard(backend, ttl_seconds=1800)


class TestTokens:
    async def test_generated_token_validates(self, csrf):
        token = await csrf.generate_token("sess-1")

        assert len(token) == 64
        int(token, 16)
        assert await csrf.validate_token("sess-1", token)

    async def test_token_is_bound_to_its_session(self, csrf):
        token = await csrf.generate_token("sess-1")
        await csrf.generate_token("sess-2")

        assert not await csrf.validate_token("sess-2", token)

    async def test_mismatch_and_empty_candidates_fail(self, csrf):
        await csrf.generate_token("sess-1")

        assert not await csrf.validate_token("sess-1", "0" * 64)
        assert not await csrf.validate_token("sess-1", "")
        assert not await csrf.validate_token("sess-1", None)

    async def test_unknown_session_fails(self, csrf):
        assert not await csrf.validate_token("nobody", "a" * 64)

    async def test_token_expires(self, csrf, clock):
        token = await csrf.generate_token("sess-1")
        clock.advance(1800)

        assert not await csrf.validate_token("sess-1", token)

    async def test_generate_replaces_previous_token(self, csrf):
        first = await csrf.generate_token("sess-1")
        second = await csrf.generate_token("sess-1")

        assert first != second
        assert not await csrf.validate_token("sess-1", first)
        assert await csrf.validate_token("sess-1", second)


class TestRotation:
    async def test_token_is_single_use_across_refresh(self, csrf):
        token = await csrf.generate_token("sess-1")
        assert await csrf.validate_token("sess-1", token)

        rotated = await csrf.refresh_token("sess-1")

        assert rotated != token
        assert not await csrf.validate_token("sess-1", token)
        assert await csrf.validate_token("sess-1", rotated)

    async def test_delete_token(self, csrf):
        token = await csrf.generate_token("sess-1")

        assert await csrf.delete_token("sess-1") is True
        assert not await csrf.validate_token("sess-1", token)


class TestBackendFailures:
    async def test_validate_fails_closed(self, csrf, backend):
        token = await csrf.generate_token("sess-1")
        backend.fail_with()

        assert await csrf.validate_token("sess-1", token) is False
