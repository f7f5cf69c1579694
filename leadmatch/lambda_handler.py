"""AWS Lambda entry point for API Gateway proxy events.

The matcher is built on the first invocation of a container and reused for
its lifetime; a missing secret raises ConfigurationError before the event is
processed. A single event loop is kept per container because the OpenAI
client's HTTP pool is bound to the loop it was first used on.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from .config import load_settings
from .logging_config import setup_logging
from .pipelines.matching import LeadMatcher
from .responses import ApiResponse, not_found

logger = logging.getLogger(__name__)

MATCHING_PATH = "/lead-student-matching"
HEALTH_PATH = "/health"


def _request_params(event: dict[str, Any]) -> tuple[Any, Any]:
    """Pull leadId and limit from the query string, or from a JSON body."""
    params = event.get("queryStringParameters") or {}
    lead_id = params.get("leadId")
    limit = params.get("limit")

    body = event.get("body")
    if lead_id is None and body:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            logger.warning("Ignoring request body that is not JSON")
            payload = None
        if isinstance(payload, dict):
            lead_id = payload.get("leadId")
            limit = payload.get("limit", limit)

    return lead_id, limit


class LambdaApp:
    """Routes proxy events to the matcher."""

    def __init__(self, matcher: LeadMatcher | None = None) -> None:
        self._matcher = matcher
        self._loop: asyncio.AbstractEventLoop | None = None

    def _get_matcher(self) -> LeadMatcher:
        if self._matcher is None:
            settings = load_settings()
            setup_logging(settings.logging.level, settings.logging.format)
            self._matcher = LeadMatcher.from_settings(settings)
        return self._matcher

    def _run(self, coro):
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(coro)

    def __call__(self, event: dict[str, Any] | None, context: Any = None) -> dict[str, Any]:
        matcher = self._get_matcher()
        event = event or {}
        path = event.get("path") or event.get("rawPath") or ""
        logger.info(
            "Request started",
            extra={"path": path, "hasQueryParams": bool(event.get("queryStringParameters"))},
        )

        try:
            if path == HEALTH_PATH:
                return ApiResponse(status_code=200, body={"status": "ok"}).to_lambda()
            if path != MATCHING_PATH:
                return not_found("Endpoint not found").to_lambda()

            lead_id, limit = _request_params(event)
            return self._run(matcher.run(lead_id, limit)).to_lambda()
        except Exception:
            logger.exception("Unexpected error")
            return ApiResponse(
                status_code=500,
                body={"error": "An unexpected error occurred"},
            ).to_lambda()


lambda_handler = LambdaApp()
