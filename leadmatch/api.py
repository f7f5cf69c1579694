"""FastAPI app exposing the lead → student matching pipeline.

Settings are loaded and the matcher is built once, in the lifespan hook, so a
missing secret stops the app before it serves a request.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import load_settings
from .errors import LeadMatchingError, ValidationError
from .instrumentation import Stopwatch
from .logging_config import setup_logging
from .pipelines.matching import LeadMatcher
from .responses import ApiResponse, failure

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class MatchRequest(BaseModel):
    """Body of POST /lead-student-matching."""
    model_config = ConfigDict(populate_by_name=True)

    lead_id: Any = Field(default=None, alias="leadId")
    limit: Any = None


def _to_json(response: ApiResponse) -> JSONResponse:
    return JSONResponse(status_code=response.status_code, content=response.body)


def get_matcher(request: Request) -> LeadMatcher:
    return request.app.state.matcher


def create_app(matcher: LeadMatcher | None = None, version: str = "0.1.0") -> FastAPI:
    """Create the application.

    Args:
        matcher: Prebuilt matcher; when None it is built from the environment
            at startup
        version: Version reported by /health
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown logic."""
        owned = None
        if matcher is None:
            settings = load_settings()
            setup_logging(settings.logging.level, settings.logging.format)
            owned = LeadMatcher.from_settings(settings)
            app.state.matcher = owned
            app.state.version = settings.version
        logger.info("Application starting up")

        yield

        logger.info("Application shutting down")
        if owned is not None:
            await owned.aclose()

    app = FastAPI(
        title="Lead → Student Matching",
        version=version,
        description="Embedding retrieval with LLM re-ranking for new leads",
        lifespan=lifespan,
    )
    app.state.version = version
    if matcher is not None:
        app.state.matcher = matcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def track_processing_time(request: Request, call_next):
        """Start the request clock used by the error handlers below."""
        request.state.stopwatch = Stopwatch()
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        """Report a malformed request like any other invalid input."""
        errors = exc.errors()
        reason = errors[0].get("msg", "invalid value") if errors else "invalid value"
        logger.warning(f"Rejected malformed request: {reason}")
        error = ValidationError(f"Invalid request: {reason}")
        return _to_json(failure(error, request.state.stopwatch.elapsed_ms()))

    @app.exception_handler(LeadMatchingError)
    async def lead_matching_error_handler(request: Request, exc: LeadMatchingError):
        """Handle pipeline errors that escape a route."""
        logger.error(f"Unhandled pipeline error: {exc}")
        return _to_json(failure(exc, request.state.stopwatch.elapsed_ms()))

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=request.app.state.version)

    @app.get("/lead-student-matching")
    async def match_lead_query(
        lead_id: str | None = Query(default=None, alias="leadId"),
        limit: str | None = Query(default=None),
        matcher: LeadMatcher = Depends(get_matcher),
    ) -> JSONResponse:
        """Match a lead given as query parameters (?leadId=...&limit=...)."""
        return _to_json(await matcher.run(lead_id, limit))

    @app.post("/lead-student-matching")
    async def match_lead_body(
        request: MatchRequest,
        matcher: LeadMatcher = Depends(get_matcher),
    ) -> JSONResponse:
        """Match a lead given as a JSON body ({"leadId": ..., "limit": ...})."""
        return _to_json(await matcher.run(request.lead_id, request.limit))

    @app.get("/leads/{lead_id}/matches")
    async def get_lead_matches(
        lead_id: str,
        matcher: LeadMatcher = Depends(get_matcher),
    ) -> JSONResponse:
        """Return the matches stored by the last run for a lead."""
        return _to_json(await matcher.stored_matches(lead_id))

    return app
