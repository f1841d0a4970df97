"""
Tests for the exception hierarchy and the JSON error handlers.
"""
import pytest
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from homeserve.api.middleware.error_handler import (
    AppException,
    NotFoundException,
    UnauthorizedException,
    ForbiddenException,
    BadRequestException,
    ConflictException,
    ValidationException,
    InvalidTransitionException,
    SignatureInvalidException,
    UpstreamFailureException,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)


def _app_with_handlers() -> FastAPI:
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    return app


@pytest.mark.unit
@pytest.mark.parametrize(
    "exc, status_code, code",
    [
        (NotFoundException("Booking"), 404, "not_found"),
        (UnauthorizedException(), 401, "unauthorized"),
        (ForbiddenException(), 403, "access_denied"),
        (BadRequestException("Malformed webhook body"), 400, "bad_request"),
        (ConflictException("Booking has already been reviewed"), 409, "conflict"),
        (ValidationException("bad"), 422, "validation_error"),
        (SignatureInvalidException(), 400, "signature_invalid"),
        (UpstreamFailureException("Gateway down"), 502, "upstream_failure"),
    ],
)
def test_status_and_code(exc, status_code, code):
    assert exc.status_code == status_code
    assert exc.code == code


@pytest.mark.unit
def test_not_found_message():
    assert NotFoundException("Booking", "b-1").message == "Booking with id 'b-1' not found"
    assert NotFoundException("Service").message == "Service not found"
    assert NotFoundException("Booking", "b-1").details == {"resource": "Booking", "resource_id": "b-1"}


@pytest.mark.unit
def test_code_override_on_base_exception():
    exc = AppException("Quota exceeded", status_code=429, code="rate_limited")
    assert exc.code == "rate_limited"
    assert AppException("boom").code == "error"


@pytest.mark.unit
def test_invalid_transition_details():
    exc = InvalidTransitionException("Booking cannot be cancelled", current_status="assigned", action="cancel")

    assert exc.status_code == 409
    assert exc.details == {"current_status": "assigned", "action": "cancel"}


@pytest.mark.unit
def test_validation_exception_keeps_field_errors():
    exc = ValidationException("Invalid address", errors={"pincode": "required"})
    assert exc.details["errors"] == {"pincode": "required"}


@pytest.mark.integration
def test_app_exception_body():
    app = _app_with_handlers()

    @app.post("/bookings/{booking_id}/cancel")
    async def cancel(booking_id: str, request: Request):
        request.state.correlation_id = "corr-42"
        raise InvalidTransitionException("Booking cannot be cancelled", current_status="completed", action="cancel")

    response = TestClient(app).post("/bookings/b-1/cancel")

    assert response.status_code == 409
    assert response.json() == {
        "error": "Booking cannot be cancelled",
        "code": "invalid_transition",
        "correlation_id": "corr-42",
        "details": {"current_status": "completed", "action": "cancel"},
    }


@pytest.mark.integration
def test_app_exception_without_details_omits_key():
    app = _app_with_handlers()

    @app.post("/payments/verify")
    async def verify():
        raise SignatureInvalidException()

    data = TestClient(app).post("/payments/verify").json()

    assert data["code"] == "signature_invalid"
    assert data["correlation_id"] == "unknown"
    assert "details" not in data


@pytest.mark.integration
def test_validation_errors_are_per_field():
    app = _app_with_handlers()

    class LocationUpdate(BaseModel):
        lat: float = Field(..., ge=-90, le=90)
        lng: float = Field(..., ge=-180, le=180)

    @app.patch("/location")
    async def update(body: LocationUpdate):
        return {"ok": True}

    response = TestClient(app).patch("/location", json={"lat": 120})

    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "validation_error"
    fields = {e["loc"][-1] for e in data["details"]["errors"]}
    assert fields == {"lat", "lng"}
    assert all({"loc", "msg", "type"} <= set(e) for e in data["details"]["errors"])


@pytest.mark.integration
def test_http_exception_codes():
    app = _app_with_handlers()

    @app.get("/needs-auth")
    async def needs_auth():
        raise StarletteHTTPException(status_code=401, detail="Not authenticated")

    @app.get("/teapot")
    async def teapot():
        raise StarletteHTTPException(status_code=418, detail="Teapot")

    client = TestClient(app)
    assert client.get("/needs-auth").json()["code"] == "unauthorized"
    assert client.get("/teapot").json()["code"] == "http_error"

    unknown = client.get("/no-such-route")
    assert unknown.status_code == 404
    assert unknown.json()["code"] == "not_found"


@pytest.mark.integration
def test_unhandled_exception_is_generic_500():
    app = _app_with_handlers()

    @app.get("/explode")
    async def explode():
        raise RuntimeError("database on fire")

    response = TestClient(app, raise_server_exceptions=False).get("/explode")

    assert response.status_code == 500
    data = response.json()
    assert data["error"] == "Internal server error"
    assert data["code"] == "internal_error"
    assert "database on fire" not in response.text
