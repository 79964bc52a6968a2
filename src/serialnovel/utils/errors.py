"""
Error handling utilities for the serial novel engine.

Provides the exception hierarchy raised by the state store, the lifecycle
operations and the HTTP layer, the constraint violation types reported by the
validator, and structured Flask error responses.
"""

import logging
import traceback
from enum import IntEnum
from typing import Optional, Dict, Any, List

from flask import jsonify, request

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for engine and API errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize API error.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            status_code: HTTP status code
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


class ValidationError(APIError):
    """Raised when input or persisted state fails schema or invariant checks."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class ChapterParseError(ValidationError):
    """Raised when generated text does not follow the chapter output format."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.error_code = "CHAPTER_PARSE_ERROR"


class NotFoundError(APIError):
    """Raised when a novel (or another resource) is not found."""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            message=f"{resource_type} with ID '{resource_id}' not found.",
            error_code="NOT_FOUND",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class ConflictError(APIError):
    """Raised when a second writer targets a slug that is already leased or taken."""

    def __init__(self, slug: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Novel '{slug}' is being modified by another operation.",
            error_code="CONFLICT",
            status_code=409,
            details={"novel_slug": slug}
        )


class ClosedNovelError(APIError):
    """Raised when a write is attempted on a Completed novel."""

    def __init__(self, slug: str):
        super().__init__(
            message=f"Novel '{slug}' is completed and accepts no further changes.",
            error_code="NOVEL_CLOSED",
            status_code=409,
            details={"novel_slug": slug}
        )


class GenerationRejectedError(APIError):
    """Raised when every generation attempt for a chapter failed validation."""

    def __init__(self, slug: str, attempts: int, violations: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message=f"generation rejected after {attempts} attempts",
            error_code="GENERATION_REJECTED",
            status_code=422,
            details={
                "novel_slug": slug,
                "attempts": attempts,
                "violations": violations or [],
            }
        )
        self.attempts = attempts
        self.violations = violations or []


class ServiceUnavailableError(APIError):
    """Raised when an external service is unavailable."""

    def __init__(self, service: str, message: Optional[str] = None):
        error_message = message or f"Service '{service}' is currently unavailable."
        super().__init__(
            message=error_message,
            error_code="SERVICE_UNAVAILABLE",
            status_code=503,
            details={"service": service}
        )


class Severity(IntEnum):
    """Severity of a constraint violation. The integer value is its score weight."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class ConstraintViolation(Exception):
    """
    A single finding produced by the constraint validator.

    Violations are recoverable: the validator collects them into a report
    instead of raising, and the orchestrator feeds them back into the next
    generation attempt.
    """

    kind = "constraint"

    def __init__(
        self,
        rule_id: str,
        message: str,
        severity: Severity = Severity.MEDIUM,
        suggestion: Optional[str] = None,
        weight: float = 1.0,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.rule_id = rule_id
        self.message = message
        self.severity = Severity(severity)
        self.suggestion = suggestion
        self.weight = weight
        self.details = details or {}

    @property
    def score(self) -> float:
        """Weighted severity contributed to the aggregate score."""
        return float(self.severity) * self.weight

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.kind,
            "ruleId": self.rule_id,
            "severity": self.severity.name.lower(),
            "message": self.message,
            "weight": self.weight,
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.details:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rule_id!r}, {self.severity.name})"


class ContinuityViolation(ConstraintViolation):
    """Generated content contradicts registered characters, world or plot facts."""

    kind = "continuity"


class PacingViolation(ConstraintViolation):
    """A progression change or narrative event falls outside the current stage bounds."""

    kind = "pacing"


def create_error_response(
    error: Exception,
    include_traceback: bool = False
) -> tuple:
    """
    Create a standardized error response.

    Args:
        error: Exception instance
        include_traceback: Whether to include traceback in response (for debugging)

    Returns:
        Tuple of (json_response, status_code)
    """
    if isinstance(error, APIError) and error.status_code < 500:
        logger.warning(
            f"{type(error).__name__}: {error.message}",
            extra={"path": request.path, "method": request.method}
        )
    else:
        logger.error(
            f"Error: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={"path": request.path, "method": request.method}
        )

    if isinstance(error, APIError):
        response = {
            "error": error.message,
            "error_code": error.error_code,
        }
        if error.details:
            response["details"] = error.details
        if include_traceback:
            response["traceback"] = traceback.format_exc()

        return jsonify(response), error.status_code

    error_message = str(error)
    error_type = type(error).__name__

    # Internal errors stay opaque outside debug mode
    if not include_traceback:
        error_message = "An unexpected error occurred. Please try again or contact support if the issue persists."

    response = {
        "error": error_message,
        "error_code": "INTERNAL_ERROR",
        "error_type": error_type,
    }

    if include_traceback:
        response["traceback"] = traceback.format_exc()

    return jsonify(response), 500


def register_error_handlers(app, debug: bool = False):
    """
    Register error handlers for the Flask app.

    Args:
        app: Flask application instance
        debug: Whether to include tracebacks in error responses
    """
    @app.errorhandler(APIError)
    def handle_api_error(error: APIError):
        """Handle APIError exceptions."""
        return create_error_response(error, include_traceback=debug)

    @app.errorhandler(404)
    def handle_not_found(error):
        """Handle 404 errors."""
        return create_error_response(
            NotFoundError("Resource", request.path),
            include_traceback=debug
        )

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        """Handle 405 Method Not Allowed errors."""
        return jsonify({
            "error": f"Method '{request.method}' not allowed for this endpoint.",
            "error_code": "METHOD_NOT_ALLOWED",
        }), 405

    @app.errorhandler(Exception)
    def handle_generic_exception(error: Exception):
        """Handle all other exceptions."""
        return create_error_response(error, include_traceback=debug)
