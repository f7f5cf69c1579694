"""Uniform response contract for the matching endpoint.

Maps pipeline outcomes and the error taxonomy onto status codes and JSON
bodies. Every body carries ``processingTimeMs``.
"""
from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import ExternalServiceError, StorageError, ValidationError
from .schemas import RankedMatch

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
    "Content-Type": "application/json",
}

# (error type, status, category label), most specific first
ERROR_STATUS: list[tuple[type[Exception], int, str]] = [
    (ValidationError, 400, "Validation error"),
    (StorageError, 503, "Database error"),
    (ExternalServiceError, 502, "AI service error"),
]
UNCLASSIFIED = (500, "Internal server error")


@dataclass
class ApiResponse:
    """Transport-neutral response: status code plus JSON body."""
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=lambda: dict(CORS_HEADERS))

    def to_lambda(self) -> dict[str, Any]:
        """API Gateway proxy integration shape."""
        return {
            "statusCode": self.status_code,
            "headers": self.headers,
            "body": json.dumps(self.body, ensure_ascii=False),
        }


def success(lead_id: str, matches: Sequence[RankedMatch], elapsed_ms: int) -> ApiResponse:
    return ApiResponse(
        status_code=200,
        body={
            "recordId": lead_id,
            "matches": [m.model_dump(by_alias=True) for m in matches],
            "processingTimeMs": elapsed_ms,
        },
    )


def short_circuit(lead_id: str, message: str, elapsed_ms: int) -> ApiResponse:
    """A successful run that found nothing to match."""
    return ApiResponse(
        status_code=200,
        body={
            "recordId": lead_id,
            "message": message,
            "matches": [],
            "processingTimeMs": elapsed_ms,
        },
    )


def classify_error(exc: BaseException) -> tuple[int, str]:
    for error_type, status_code, label in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, label
    return UNCLASSIFIED


def failure(exc: BaseException, elapsed_ms: int) -> ApiResponse:
    status_code, label = classify_error(exc)
    return ApiResponse(
        status_code=status_code,
        body={"error": label, "details": str(exc), "processingTimeMs": elapsed_ms},
    )


def not_found(message: str) -> ApiResponse:
    return ApiResponse(status_code=404, body={"error": message})
