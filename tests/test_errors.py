"""
Error handling tests.

CRITICAL: These tests verify that:
1. All errors return consistent shapes
2. Stack traces are never returned to clients
3. Correlation IDs are included in responses
4. Licensing errors map to the right status codes
"""

import pytest
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.testclient import TestClient

from adgenius.entitlements.errors import (
    EntitlementLookupError,
    FeatureDeniedError,
    InsufficientCreditsError,
    LicensingError,
    NoActiveLicenseError,
    StorageUnavailableError,
    UnknownProductError,
    VerificationFailedError,
)
from adgenius.platform.errors import (
    AppError,
    AuthenticationError,
    ErrorHandlerMiddleware,
    ValidationError,
    app_error_response,
    get_correlation_id,
)


# ============================================================================
# TEST SUITE: ERROR CLASSES
# ============================================================================

class TestErrorClasses:
    """Test error class definitions."""

    def test_app_error_to_dict(self):
        """AppError can be converted to dict."""
        error = AppError(code="TEST_ERROR", message="Test message", details={"extra": "info"})

        result = error.to_dict()

        assert result["error"]["code"] == "TEST_ERROR"
        assert result["error"]["message"] == "Test message"
        assert result["error"]["details"] == {"extra": "info"}

    def test_validation_error_is_400(self):
        error = ValidationError("Invalid input", {"field": "name"})

        assert error.status_code == status.HTTP_400_BAD_REQUEST
        assert error.code == "VALIDATION_ERROR"

    def test_authentication_error_is_401(self):
        error = AuthenticationError()

        assert error.status_code == status.HTTP_401_UNAUTHORIZED
        assert error.code == "AUTHENTICATION_ERROR"


# ============================================================================
# TEST SUITE: LICENSING ERRORS
# ============================================================================

class TestLicensingErrors:
    """Licensing error taxonomy."""

    def test_all_are_licensing_errors(self):
        errors = [
            UnknownProductError("x"),
            VerificationFailedError("t", "bad"),
            InsufficientCreditsError("u", 1, 0),
            FeatureDeniedError("u", "white_label"),
            EntitlementLookupError("u"),
            StorageUnavailableError("consume"),
            NoActiveLicenseError("u"),
        ]
        for error in errors:
            assert isinstance(error, LicensingError)
            assert isinstance(error, AppError)

    def test_insufficient_credits_is_402_with_details(self):
        error = InsufficientCreditsError("user-1", required=5, remaining=2)

        assert error.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert error.details == {
            "credits_required": 5,
            "credits_remaining": 2,
            "upgrade_required": True,
        }

    def test_feature_denied_is_402(self):
        error = FeatureDeniedError("user-1", "white_label")

        assert error.status_code == 402
        assert error.details["feature"] == "white_label"

    def test_lookup_error_is_retryable_503(self):
        cause = RuntimeError("connection reset")
        error = EntitlementLookupError("user-1", cause=cause)

        assert error.status_code == 503
        assert error.details["retryable"] is True
        assert error.cause is cause

    def test_storage_unavailable_is_retryable_503(self):
        error = StorageUnavailableError("refund")

        assert error.status_code == 503
        assert error.code == "STORAGE_UNAVAILABLE"
        assert error.details == {"retryable": True, "operation": "refund"}

    def test_no_active_license_is_404(self):
        error = NoActiveLicenseError("user-1")

        assert error.status_code == 404
        assert error.to_dict()["error"]["details"] == {}

    def test_unknown_product_is_422(self):
        assert UnknownProductError("gold").status_code == 422

    def test_verification_failed_keeps_reason(self):
        error = VerificationFailedError("TXN-1", "signature mismatch")

        assert error.reason == "signature mismatch"
        assert error.details == {"transaction_id": "TXN-1"}


# ============================================================================
# TEST SUITE: CORRELATION IDS
# ============================================================================

class TestCorrelationId:
    """Correlation ID helpers."""

    def test_uses_header_when_present(self):
        request = Request({"type": "http", "headers": [(b"x-correlation-id", b"abc-123")]})

        assert get_correlation_id(request) == "abc-123"

    def test_generates_uuid_when_missing(self):
        request = Request({"type": "http", "headers": []})

        assert len(get_correlation_id(request)) == 36

    def test_app_error_response_carries_header(self):
        response = app_error_response(FeatureDeniedError("user-1", "white_label"), "corr-1")

        assert response.status_code == 402
        assert response.headers["X-Correlation-ID"] == "corr-1"


# ============================================================================
# TEST SUITE: ERROR HANDLER MIDDLEWARE
# ============================================================================

class TestErrorHandlerMiddleware:
    """Test error handler middleware."""

    @pytest.fixture
    def app_with_error_handler(self):
        app = FastAPI()

        @app.middleware("http")
        async def error_handler(request: Request, call_next):
            middleware = ErrorHandlerMiddleware(app)
            return await middleware.dispatch(request, call_next)

        @app.get("/ok")
        async def ok():
            return {"status": "ok"}

        @app.get("/credits")
        async def raise_insufficient():
            raise InsufficientCreditsError("user-1", required=1, remaining=0)

        @app.get("/http-error")
        async def raise_http_error():
            raise HTTPException(status_code=400, detail="HTTP error detail")

        @app.get("/unexpected-error")
        async def raise_unexpected():
            raise RuntimeError("Unexpected internal error")

        return app

    def test_successful_request_has_correlation_id(self, app_with_error_handler):
        response = TestClient(app_with_error_handler).get("/ok")

        assert response.status_code == 200
        assert "X-Correlation-ID" in response.headers

    def test_licensing_error_returns_consistent_format(self, app_with_error_handler):
        response = TestClient(app_with_error_handler).get("/credits")

        assert response.status_code == 402
        data = response.json()
        assert data["error"]["code"] == "INSUFFICIENT_CREDITS"
        assert "X-Correlation-ID" in response.headers

    def test_http_exception_returns_error_response(self, app_with_error_handler):
        response = TestClient(app_with_error_handler).get("/http-error")

        assert response.status_code == 400

    def test_unexpected_error_hides_details(self, app_with_error_handler):
        response = TestClient(app_with_error_handler, raise_server_exceptions=False).get("/unexpected-error")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "INTERNAL_ERROR"
        assert "Unexpected internal error" not in response.text
        assert "correlation_id" in data["error"]["details"]
