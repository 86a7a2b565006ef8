"""Tests for the error envelope and the service error hierarchy."""

import json

import pytest
from pydantic import ValidationError

from trustgate.api.error_handling import _error_code_for_status, _error_response
from trustgate.api.schemas import Envelope, ErrorBody, LoginRequest, RegisterRequest
from trustgate.service.errors import (
    BlockedError,
    InvalidCsrfToken,
    RateLimitedError,
    ServiceError,
    SessionLimitExceeded,
)


class TestErrorBody:
    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="no")

    def test_error_response_shape(self):
        resp = _error_response(429, "Too many requests")
        body = json.loads(resp.body)

        assert resp.status_code == 429
        assert body["status"] == "error"
        assert body["data"] is None
        assert body["error"] == {
            "code": "rate_limited",
            "message": "Too many requests",
            "details": None,
        }
        assert body["request_id"]

    def test_unmapped_status_is_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_envelope_status_is_constrained(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")


class TestServiceErrors:
    @pytest.mark.parametrize(
        "exc, status, code",
        [
            (BlockedError(), 403, "forbidden"),
            (InvalidCsrfToken(), 403, "forbidden"),
            (SessionLimitExceeded(), 409, "session_limit"),
            (RateLimitedError(), 429, "rate_limited"),
        ],
    )
    def test_status_and_code(self, exc, status, code):
        assert isinstance(exc, ServiceError)
        assert exc.status_code == status
        assert exc.error_code == code

    def test_overrides(self):
        exc = ServiceError("nope", status_code=418, error_code="server_error", detail={"a": 1})
        assert exc.status_code == 418
        assert exc.detail == {"a": 1}
        assert ServiceError("x").status_code == 400


class TestRequestSchemas:
    def test_register_accepts_camel_case_and_normalizes_email(self):
        body = RegisterRequest(
            email=" Alice@Example.com ",
            password="Sup3r-Secret!",
            confirmPassword="Sup3r-Secret!",
            firstName="Alice",
            lastName="Liddell",
        )
        assert body.email == "alice@example.com"
        assert body.first_name == "Alice"

    @pytest.mark.parametrize("password", ["short1!", "nouppercase1!", "NoNumber!!", "NoSpecial123"])
    def test_register_password_rules(self, password):
        with pytest.raises(ValidationError):
            RegisterRequest(
                email="a@example.com",
                password=password,
                confirmPassword=password,
                firstName="Al",
                lastName="Ic",
            )

    @pytest.mark.parametrize("email", ["no-at-sign", "a@b", "@example.com", "a@-bad-.com"])
    def test_login_rejects_bad_emails(self, email):
        with pytest.raises(ValidationError):
            LoginRequest(email=email, password="whatever1")
