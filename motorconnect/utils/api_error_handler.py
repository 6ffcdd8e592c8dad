# motorconnect/utils/api_error_handler.py

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .api_client import (
    MarketplaceAPIError,
    MarketplaceNetworkError,
    SessionExpiredError,
    extract_error_message,
)

logger = logging.getLogger(__name__)


class APIErrorCode(Enum):
    """Standardized error codes surfaced to page clients"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# HTTP status the gateway answers with for each code
STATUS_CODES = {
    APIErrorCode.VALIDATION_ERROR: 422,
    APIErrorCode.UNAUTHORIZED: 401,
    APIErrorCode.NOT_FOUND: 404,
    APIErrorCode.NETWORK_ERROR: 502,
    APIErrorCode.API_ERROR: 502,
    APIErrorCode.UNKNOWN_ERROR: 500,
}


def error_message(exception: Exception, fallback: str) -> str:
    """
    Message to show for a failed call: the API body's message when there is one,
    otherwise the fallback string.
    """
    if isinstance(exception, MarketplaceAPIError):
        return extract_error_message(exception.payload, fallback)
    if isinstance(exception, ValidationError):
        errors = exception.errors()
        if errors:
            return str(errors[0].get("msg", fallback))
    return fallback


def classify_exception(exception: Exception) -> APIErrorCode:
    if isinstance(exception, ValidationError):
        return APIErrorCode.VALIDATION_ERROR
    if isinstance(exception, SessionExpiredError):
        return APIErrorCode.UNAUTHORIZED
    if isinstance(exception, MarketplaceNetworkError):
        return APIErrorCode.NETWORK_ERROR
    if isinstance(exception, MarketplaceAPIError):
        if exception.status_code == 404:
            return APIErrorCode.NOT_FOUND
        if exception.status_code in (400, 422):
            return APIErrorCode.VALIDATION_ERROR
        return APIErrorCode.API_ERROR
    return APIErrorCode.UNKNOWN_ERROR


def status_code_for(exception: Exception) -> int:
    return STATUS_CODES[classify_exception(exception)]


def create_error_response(error_code: APIErrorCode, message: str, details: Optional[Dict] = None) -> Dict[str, Any]:
    """
    Create standardized error response for gateway endpoints
    """
    return {
        "success": False,
        "error": {
            "code": error_code.value,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }


def log_error_context(operation: str, exception: Exception, additional_context: Optional[Dict] = None):
    """
    Log a failed marketplace call with enough context to trace it
    """
    error_code = classify_exception(exception)
    context = {
        "operation": operation,
        "error_code": error_code.value,
        "error_message": str(exception),
    }
    if additional_context:
        context.update(additional_context)

    if error_code in (APIErrorCode.NETWORK_ERROR, APIErrorCode.UNKNOWN_ERROR):
        logger.error(f"Marketplace call failed in {operation}", extra=context)
    else:
        logger.warning(f"Marketplace call rejected in {operation}", extra=context)
