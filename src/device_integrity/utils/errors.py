"""
Standardized error responses for the attestation API
"""

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
import uuid

ERROR_REGISTRY = {
    400: ("INTEGRITY-400", "Bad Request: Malformed attestation input", False),
    401: ("INTEGRITY-401", "Unauthorized: Attestation or assertion rejected", False),
    404: ("INTEGRITY-404", "Not Found: No attestation record for key", False),
    409: ("INTEGRITY-409", "Conflict: Key tag already registered", False),
    422: ("INTEGRITY-422", "Unprocessable Entity: Semantic validation error", False),
    500: ("INTEGRITY-500", "Internal Server Error: Generic server failure", True),
    503: ("INTEGRITY-503", "Service Unavailable: Downstream dependency failure", True),
}


async def error_handler(request: Request, exc: HTTPException):
    """Standardized error handler for all HTTP exceptions"""
    error_code, message, retryable = ERROR_REGISTRY.get(
        exc.status_code,
        ("INTEGRITY-500", "Internal Server Error", True)
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "transaction_id": str(uuid.uuid4()),
            "error_code": error_code,
            "message": exc.detail or message,
            "retryable": retryable
        }
    )
