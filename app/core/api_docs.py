from typing import Any

from app.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("bad_request", "Bad request"),
    401: ("unauthorized", "Unauthorized"),
    402: ("payment_required", "Subscription expired"),
    403: ("forbidden", "Forbidden"),
    404: ("not_found", "Resource not found"),
    409: ("conflict", "Conflict"),
    422: ("validation_error", "Validation error"),
    429: ("rate_limited", "Too many requests"),
    500: ("internal_error", "Internal server error"),
}

# Shapes clients branch on; keep in sync with the subscription gate.
_ERROR_DETAILS: dict[int, dict[str, Any]] = {
    402: {
        "redirect_to": "/subscription-expired",
        "renewal_required": True,
        "status": "expired",
        "subscription_end_date": "2026-09-30T12:00:00+00:00",
        "days_expired": 3,
    },
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": code,
                            "message": message,
                            "request_id": "request-id",
                            "path": "/products",
                            "details": _ERROR_DETAILS.get(status_code),
                        }
                    }
                }
            },
        }
        if status_code == 429:
            responses[status_code]["headers"] = {
                "Retry-After": {"description": "Seconds until the window reopens", "schema": {"type": "integer"}}
            }
    return responses
