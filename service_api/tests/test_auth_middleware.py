"""
Tests for the authentication gate.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from service_api.app.auth.middleware import (
    MISSING_OR_INVALID_HEADER, AuthenticationGate, extract_bearer_token
)
from service_api.app.context import get_subject_id
from service_api.app.validation.token_validator import VerifiedToken
from shared.errors import ApiException, Unauthorized
from shared.metrics import MetricsCollector


def verified(subject_id="auth0|user-1"):
    return VerifiedToken(
        subject_id=subject_id,
        audience="https://api.what-went-wrong.test",
        issuer="https://what-went-wrong.test.auth0.com/",
        expires_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def verifier():
    """Verifier double accepting every token."""
    mock = AsyncMock()
    mock.verify.return_value = verified()
    return mock


@pytest.fixture
def metrics():
    return MetricsCollector("api")


@pytest.fixture
def client(verifier, metrics):
    """App with one route behind the gate."""
    gate = AuthenticationGate(verifier, metrics=metrics)
    app = FastAPI()

    @app.exception_handler(ApiException)
    async def api_exception_handler(request, exc: ApiException):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump(exclude_none=True))

    @app.get("/protected")
    async def protected(request: Request, subject_id: str = Depends(gate)):
        return {"subject_id": subject_id, "from_state": get_subject_id(request)}

    return TestClient(app)


class TestExtractBearerToken:
    """Test cases for Authorization header parsing."""

    @pytest.mark.parametrize("header", [
        None,
        "",
        "Bearer",
        "Bearer ",
        "bearer abc.def.ghi",
        "Basic dXNlcjpwYXNz",
        "Token abc.def.ghi",
        "Bearer  abc.def.ghi",
        "Bearer abc def",
        "Bearer abc.def.ghi ",
    ])
    def test_rejects_malformed_headers(self, header):
        assert extract_bearer_token(header) is None

    def test_returns_token(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"


class TestAuthenticationGate:
    """Test cases for AuthenticationGate."""

    def test_missing_header_rejected_without_verification(self, client, verifier):
        response = client.get("/protected")

        assert response.status_code == 401
        assert response.json() == {"error": MISSING_OR_INVALID_HEADER}
        verifier.verify.assert_not_called()

    @pytest.mark.parametrize("header", ["Basic dXNlcjpwYXNz", "Bearer", "Bearer "])
    def test_malformed_header_rejected_without_verification(self, client, verifier, header):
        response = client.get("/protected", headers={"Authorization": header})

        assert response.status_code == 401
        assert response.json() == {"error": MISSING_OR_INVALID_HEADER}
        verifier.verify.assert_not_called()

    def test_valid_token_attaches_subject(self, client, verifier):
        response = client.get("/protected", headers={"Authorization": "Bearer abc.def.ghi"})

        assert response.status_code == 200
        assert response.json() == {"subject_id": "auth0|user-1", "from_state": "auth0|user-1"}
        verifier.verify.assert_awaited_once_with("abc.def.ghi")

    def test_verification_failure_returns_reason(self, client, verifier, metrics):
        verifier.verify.side_effect = Unauthorized("token_expired", "token has expired")

        response = client.get("/protected", headers={"Authorization": "Bearer abc.def.ghi"})

        assert response.status_code == 401
        assert response.json() == {"error": "token has expired", "detail": "token_expired"}
        assert metrics.registry.get_sample_value(
            "auth_failures_total", {"reason": "token_expired"}
        ) == 1

    def test_unexpected_verifier_error_fails_closed(self, client, verifier, metrics):
        verifier.verify.side_effect = RuntimeError("boom")

        response = client.get("/protected", headers={"Authorization": "Bearer abc.def.ghi"})

        assert response.status_code == 401
        assert response.json() == {"error": "invalid token", "detail": "verification_error"}
        assert metrics.registry.get_sample_value(
            "auth_failures_total", {"reason": "verifier_error"}
        ) == 1

    def test_missing_header_is_counted(self, client, metrics):
        client.get("/protected")

        assert metrics.registry.get_sample_value(
            "auth_failures_total", {"reason": "missing_header"}
        ) == 1


class TestGetSubjectId:
    """Test cases for reading the authenticated subject."""

    def test_absent_subject_is_unauthorized(self):
        request = Request({"type": "http", "headers": [], "state": {}})

        with pytest.raises(Unauthorized) as exc_info:
            get_subject_id(request)

        assert exc_info.value.to_response().model_dump(exclude_none=True) == {"error": "Unauthorized"}
