"""
Structured Error Responses

Provides standardized error bodies for the HTTP layer.
Helps UI distinguish between validation errors, conflicts and
connectivity issues.

Error Response Format:
{
    "error": "validation_error" | "invalid_parameter" | "not_found" | ...,
    "code": "VALIDATION_ERROR",
    "message": "...",
    "errors": [{"field": "email", "message": "is invalid format"}]
}
"""

import uuid
from typing import Optional, Any, List, Dict

from fastapi import HTTPException, status


class ValidationErrorResponse:
    """Structured error response builder."""

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)

        Returns:
            Structured error dict
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def validation_error(message: str, errors: Optional[List[Dict[str, str]]] = None) -> dict:
        """
        Create a field validation error response.

        Args:
            message: Summary of the failure
            errors: One entry per violated field

        Returns:
            Structured error dict
        """
        return {
            "error": "validation_error",
            "code": "VALIDATION_ERROR",
            "message": message,
            "errors": errors or [],
        }

    @staticmethod
    def domain_error(error: str, code: str, message: str, **details: Any) -> dict:
        """Error body for a typed domain failure (not found, conflict, ...)."""
        response = {
            "error": error,
            "code": code,
            "message": message,
        }
        response.update({k: v for k, v in details.items() if v is not None})
        return response

    @staticmethod
    def internal_error(request_id: Optional[str] = None) -> dict:
        """Opaque body for unexpected failures; details only go to logs."""
        return {
            "error": "internal_error",
            "code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "request_id": request_id,
        }


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None):
    """
    Raise HTTPException with structured invalid parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def parse_uuid(value: str, parameter: str) -> uuid.UUID:
    """
    Parse a UUID path or query parameter.

    Raises:
        HTTPException with structured error if the value is not a UUID
    """
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        raise_invalid_parameter(
            parameter,
            f"{parameter} must be a valid UUID format",
            value
        )
