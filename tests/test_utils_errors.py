"""Tests for error classes and the FastAPI error handlers."""
from unittest.mock import patch, MagicMock
import json

import pytest
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError

from app.utils.errors import (
    AppError,
    ClaimMappingError,
    ClaimMatchError,
    EDIError,
    EnvelopeError,
    NotFoundError,
    PostingError,
    TokenizeError,
    ValidationError as AppValidationError,
    app_error_handler,
    general_exception_handler,
    validation_error_handler,
)


@pytest.mark.unit
class TestAppError:
    """Tests for AppError base class."""

    def test_app_error_basic(self):
        """Test basic AppError creation."""
        error = AppError("Test error message")
        assert error.message == "Test error message"
        assert error.status_code == 500
        assert error.code == "APP_ERROR"
        assert error.details == {}
        assert str(error) == "Test error message"

    def test_app_error_with_details(self):
        details = {"field": "value"}
        error = AppError("Test error", status_code=400, code="CUSTOM", details=details)
        assert error.status_code == 400
        assert error.code == "CUSTOM"
        assert error.details == details

    def test_validation_error(self):
        error = AppValidationError("Validation failed", details={"offset": 3})
        assert error.status_code == status.HTTP_400_BAD_REQUEST
        assert error.code == "VALIDATION_ERROR"
        assert error.details == {"offset": 3}

    def test_not_found_error_with_identifier(self):
        """Test NotFoundError with identifier."""
        error = NotFoundError("ERA file", identifier="123")
        assert error.message == "ERA file not found (id: 123)"
        assert error.status_code == status.HTTP_404_NOT_FOUND
        assert error.code == "NOT_FOUND"

    def test_not_found_error_without_identifier(self):
        assert NotFoundError("Ledger entry").message == "Ledger entry not found"


@pytest.mark.unit
class TestEDIErrors:
    """Parsing errors share the EDIError base and a 422 status."""

    def test_tokenize_error(self):
        error = TokenizeError("Input is empty")
        assert isinstance(error, EDIError)
        assert error.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert error.code == "TOKENIZE_ERROR"

    def test_envelope_error_details(self):
        error = EnvelopeError("IEA02 mismatch", segment_id="IEA", position=30)
        assert error.code == "ENVELOPE_ERROR"
        assert error.details == {"segment_id": "IEA", "position": 30}
        assert error.position == 30

    def test_envelope_error_without_location(self):
        assert EnvelopeError("Required BPR or TRN segment is missing").details == {}

    def test_claim_mapping_error(self):
        error = ClaimMappingError("CLP04 is missing", segment_id="CLP", position=12)
        assert error.code == "CLAIM_MAPPING_ERROR"
        assert error.segment_id == "CLP"


@pytest.mark.unit
class TestPostingErrors:
    """Match and posting errors carry a machine-readable reason."""

    def test_claim_match_not_found(self):
        error = ClaimMatchError(ClaimMatchError.NOT_FOUND, "No internal claim matches CLM9")
        assert error.reason == "NOT_FOUND"
        assert error.status_code == status.HTTP_404_NOT_FOUND
        assert error.candidate_ids == []

    def test_claim_match_ambiguous(self):
        error = ClaimMatchError(ClaimMatchError.AMBIGUOUS, "Two claims", candidate_ids=[3, 7])
        assert error.status_code == status.HTTP_409_CONFLICT
        assert error.details == {"candidate_ids": [3, 7]}

    def test_posting_error_defaults(self):
        error = PostingError(PostingError.INVALID_STATE, "Claim is paid")
        assert error.reason == "INVALID_STATE"
        assert error.code == "INVALID_STATE"
        assert error.status_code == status.HTTP_409_CONFLICT
        assert error.transient is False

    def test_transient_posting_error(self):
        assert PostingError(PostingError.CONFLICT, "Stale", transient=True).transient is True


@pytest.mark.unit
class TestAppErrorHandler:
    """Tests for app_error_handler function."""

    @pytest.fixture
    def mock_request(self):
        """Create a mock FastAPI request."""
        request = MagicMock(spec=Request)
        request.url.path = "/api/v1/era-files/1"
        request.method = "GET"
        return request

    @pytest.mark.asyncio
    async def test_client_error_response(self, mock_request):
        error = NotFoundError("ERA file", "1")

        with patch("app.utils.errors.add_breadcrumb") as mock_breadcrumb, \
             patch("app.utils.errors.logger") as mock_logger, \
             patch("app.utils.errors.capture_exception") as mock_capture, \
             patch("app.utils.errors.settings") as mock_settings:
            mock_settings.enable_alerts = True
            mock_settings.alert_on_errors = False

            response = await app_error_handler(mock_request, error)

            assert response.status_code == 404
            body = json.loads(response.body)
            assert body == {"error": "NOT_FOUND", "message": "ERA file not found (id: 1)", "details": {}}
            mock_breadcrumb.assert_called_once()
            mock_logger.warning.assert_called_once()
            mock_capture.assert_not_called()

    @pytest.mark.asyncio
    async def test_server_error_alerts(self, mock_request):
        """Server errors are sent to Sentry when alerts are enabled."""
        error = AppError("Server error", status_code=500)

        with patch("app.utils.errors.add_breadcrumb"), \
             patch("app.utils.errors.logger"), \
             patch("app.utils.errors.capture_exception") as mock_capture, \
             patch("app.utils.errors.settings") as mock_settings:
            mock_settings.enable_alerts = True
            mock_settings.alert_on_errors = False

            await app_error_handler(mock_request, error)

            mock_capture.assert_called_once()
            assert mock_capture.call_args[1]["level"] == "error"
            assert mock_capture.call_args[1]["tags"]["error_type"] == "APP_ERROR"

    @pytest.mark.asyncio
    async def test_client_error_alerts_with_alert_on_errors(self, mock_request):
        error = PostingError(PostingError.ALREADY_POSTED, "Already reversed")

        with patch("app.utils.errors.add_breadcrumb"), \
             patch("app.utils.errors.logger"), \
             patch("app.utils.errors.capture_exception") as mock_capture, \
             patch("app.utils.errors.settings") as mock_settings:
            mock_settings.enable_alerts = True
            mock_settings.alert_on_errors = True

            response = await app_error_handler(mock_request, error)

            assert response.status_code == 409
            assert mock_capture.call_args[1]["level"] == "warning"

    @pytest.mark.asyncio
    async def test_alerts_disabled(self, mock_request):
        with patch("app.utils.errors.add_breadcrumb"), \
             patch("app.utils.errors.logger"), \
             patch("app.utils.errors.capture_exception") as mock_capture, \
             patch("app.utils.errors.settings") as mock_settings:
            mock_settings.enable_alerts = False

            await app_error_handler(mock_request, AppError("Boom"))

            mock_capture.assert_not_called()


@pytest.mark.unit
class TestValidationErrorHandler:
    """Tests for validation_error_handler function."""

    @pytest.mark.asyncio
    async def test_validation_errors_are_serializable(self):
        """Exception objects in pydantic error context are dropped."""
        request = MagicMock(spec=Request)
        request.url.path = "/api/v1/ledger/1/reverse"
        request.method = "POST"
        error = MagicMock(spec=RequestValidationError)
        error.errors.return_value = [
            {
                "loc": ["body", "reason"],
                "msg": "field required",
                "type": "missing",
                "input": {},
                "ctx": {"error": ValueError("bad")},
            }
        ]

        with patch("app.utils.errors.add_breadcrumb"), \
             patch("app.utils.errors.logger"), \
             patch("app.utils.errors.capture_exception") as mock_capture, \
             patch("app.utils.errors.settings") as mock_settings:
            mock_settings.enable_alerts = False

            response = await validation_error_handler(request, error)

            assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
            body = json.loads(response.body)
            assert body["error"] == "VALIDATION_ERROR"
            assert body["details"] == [{"loc": ["body", "reason"], "msg": "field required", "type": "missing"}]
            mock_capture.assert_not_called()


@pytest.mark.unit
class TestGeneralExceptionHandler:
    """Tests for general_exception_handler function."""

    @pytest.mark.asyncio
    async def test_unexpected_error_hides_details(self):
        request = MagicMock(spec=Request)
        request.url = MagicMock()
        request.url.path = "/api/v1/remits/upload"
        request.method = "POST"

        with patch("app.utils.errors.add_breadcrumb"), \
             patch("app.utils.errors.logger") as mock_logger, \
             patch("app.utils.errors.capture_exception") as mock_capture, \
             patch("app.utils.errors.settings") as mock_settings:
            mock_settings.enable_alerts = True

            response = await general_exception_handler(request, ValueError("secret detail"))

            assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
            assert b"secret detail" not in response.body
            assert json.loads(response.body)["error"] == "INTERNAL_ERROR"
            mock_logger.error.assert_called_once()
            mock_capture.assert_called_once()
