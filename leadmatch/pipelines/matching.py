"""Matching pipeline: Lead → similar students via embeddings and LLM re-ranking.

One request walks a fixed sequence of states:

    VALIDATING → CONNECTING → FETCHING_RECORD → CHECKING_MEANINGFULNESS →
    EMBEDDING → SEARCHING_CANDIDATES → RERANKING → PERSISTING → RESPONDING

Any step may raise, which moves the request to FAILED and is mapped to an
error response. Three outcomes end early with a 200 and no matches: a lead
without data, a lead whose profile text is empty, and an empty candidate
search. The connection opened in CONNECTING is closed exactly once on every
path. Reads end their transaction straight away, so no transaction is held
open across the model calls.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from enum import Enum
from functools import partial
from typing import Any

import openai
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession

from ai.client import create_openai_client
from ai.embeddings import EmbeddingClient
from ai.reranker import RerankEvaluator
from leadmatch import responses
from leadmatch.config import MatchingSettings, Settings
from leadmatch.db import create_engine, create_session_factory, open_connection
from leadmatch.errors import StorageError, ValidationError
from leadmatch.instrumentation import Stopwatch, log_memory_usage, timed
from leadmatch.pipelines.profile import (
    LEAD_ID_MAX_LENGTH,
    build_profile_text,
    has_meaningful_data,
    parse_limit,
    sanitize_lead_id,
)
from leadmatch.repository import LeadRepository

logger = logging.getLogger(__name__)

NO_MEANINGFUL_DATA = "No meaningful data found for lead"
NO_PROFILE_TEXT = "No text could be generated from lead data"
NO_CANDIDATES = "No similar students found"


class MatchState(str, Enum):
    """Pipeline states."""
    VALIDATING = "validating"
    CONNECTING = "connecting"
    FETCHING_RECORD = "fetching_record"
    CHECKING_MEANINGFULNESS = "checking_meaningfulness"
    EMBEDDING = "embedding"
    SEARCHING_CANDIDATES = "searching_candidates"
    RERANKING = "reranking"
    PERSISTING = "persisting"
    RESPONDING = "responding"
    FAILED = "failed"


class _StateTracker:
    """Current state of one request, logged on every transition."""

    def __init__(self) -> None:
        self.state = MatchState.VALIDATING
        self.lead_id: str | None = None

    def advance(self, state: MatchState) -> None:
        logger.debug(
            f"State {self.state.value} -> {state.value}",
            extra={"leadId": self.lead_id, "state": state.value},
        )
        self.state = state


class LeadMatcher:
    """Runs the matching pipeline for one lead per call.

    Holds only process-wide, stateless collaborators; every call opens its
    own connection, so concurrent calls share nothing mutable.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[AsyncConnection]],
        embedder: EmbeddingClient,
        reranker: RerankEvaluator,
        *,
        session_factory: Callable[..., AsyncSession] | None = None,
        matching: MatchingSettings | None = None,
        repository_factory: Callable[[AsyncSession], LeadRepository] | None = None,
        engine: AsyncEngine | None = None,
        openai_client: openai.AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the matcher.

        Args:
            connect: Opens a new database connection per request
            embedder: Embedding client
            session_factory: Builds a session bound to a connection (``bind=``)
            reranker: Re-ranking evaluator
            matching: Retrieval width, distance metric and limit bounds
            repository_factory: Builds the repository for a session
            engine: Engine to dispose on shutdown, if owned
            openai_client: OpenAI client to close on shutdown, if owned
        """
        self.matching = matching or MatchingSettings()
        self._connect = connect
        self._session_factory = session_factory or create_session_factory()
        self._embedder = embedder
        self._reranker = reranker
        self._repository_factory = repository_factory or (
            lambda session: LeadRepository(session, distance_metric=self.matching.distance_metric)
        )
        self._engine = engine
        self._openai_client = openai_client

    @classmethod
    def from_settings(cls, settings: Settings) -> LeadMatcher:
        """Build the matcher and all of its collaborators once per process."""
        engine = create_engine(settings.db)
        client = create_openai_client(settings.openai)
        return cls(
            partial(open_connection, engine),
            EmbeddingClient.from_settings(client, settings.embeddings, settings.openai),
            RerankEvaluator.from_settings(client, settings.matching, settings.openai),
            matching=settings.matching,
            engine=engine,
            openai_client=client,
        )

    async def aclose(self) -> None:
        """Release the engine and the OpenAI client."""
        if self._engine is not None:
            await self._engine.dispose()
        if self._openai_client is not None:
            await self._openai_client.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[AsyncSession]:
        with timed("Database connection"):
            try:
                connection = await self._connect()
            except Exception as e:
                raise StorageError("Failed to connect to database", cause=e) from e

        session = self._session_factory(bind=connection)
        try:
            yield session
        finally:
            await self._release(session, connection)

    async def _release(self, session: AsyncSession, connection: AsyncConnection) -> None:
        with timed("Database connection close"):
            try:
                await session.close()
            except Exception as e:
                logger.error("Error closing database session", extra={"error": str(e)})
            try:
                await connection.close()
                logger.info("Database connection closed")
            except Exception as e:
                logger.error("Error closing database connection", extra={"error": str(e)})

    def _validate(self, raw_lead_id: Any, raw_limit: Any) -> tuple[str, int]:
        lead_id = sanitize_lead_id(raw_lead_id)
        if lead_id is None:
            logger.warning(
                "Invalid leadId provided",
                extra={"rawLeadId": raw_lead_id if isinstance(raw_lead_id, str) else repr(raw_lead_id)},
            )
            raise ValidationError(
                "Invalid or missing leadId parameter: leadId must be a non-empty string "
                f"of at most {LEAD_ID_MAX_LENGTH} valid characters"
            )
        limit = parse_limit(
            raw_limit,
            default=min(self.matching.default_limit, self.matching.max_limit),
            maximum=self.matching.max_limit,
        )
        return lead_id, limit

    async def run(self, raw_lead_id: Any, raw_limit: Any = None) -> responses.ApiResponse:
        """Match a lead to similar students and persist the result.

        Steps:
        1. Sanitize the lead id and limit
        2. Open a database connection
        3. Load the lead and check it carries data
        4. Build the profile text and embed it
        5. Retrieve nearest students via pgvector
        6. Re-rank them with the chat model
        7. Replace the stored matches for the lead

        Args:
            raw_lead_id: Lead id as received from the caller
            raw_limit: Optional result-count limit as received

        Returns:
            ApiResponse, success or typed failure; never raises
        """
        watch = Stopwatch()
        tracker = _StateTracker()

        try:
            lead_id, limit = self._validate(raw_lead_id, raw_limit)
            tracker.lead_id = lead_id
            logger.info("Processing lead", extra={"leadId": lead_id, "limit": limit})

            tracker.advance(MatchState.CONNECTING)
            async with self._connection() as session:
                response = await self._match(
                    self._repository_factory(session), lead_id, limit, tracker, watch
                )
        except Exception as exc:
            return self._fail(exc, tracker, watch)

        log_memory_usage("Request end")
        return response

    async def _match(
        self,
        repo: LeadRepository,
        lead_id: str,
        limit: int,
        tracker: _StateTracker,
        watch: Stopwatch,
    ) -> responses.ApiResponse:
        tracker.advance(MatchState.FETCHING_RECORD)
        with timed("Lead data retrieval", leadId=lead_id):
            lead = await repo.fetch_lead(lead_id)

        tracker.advance(MatchState.CHECKING_MEANINGFULNESS)
        if not has_meaningful_data(lead):
            logger.warning(NO_MEANINGFUL_DATA, extra={"leadId": lead_id})
            return self._respond_empty(lead_id, NO_MEANINGFUL_DATA, tracker, watch)

        with timed("Text preparation", leadId=lead_id):
            profile_text = build_profile_text(lead)
        if not profile_text.strip():
            logger.warning(NO_PROFILE_TEXT, extra={"leadId": lead_id})
            return self._respond_empty(lead_id, NO_PROFILE_TEXT, tracker, watch)

        logger.info(
            "Text prepared for embedding",
            extra={"leadId": lead_id, "textLength": len(profile_text), "preview": profile_text[:100]},
        )

        tracker.advance(MatchState.EMBEDDING)
        with timed("OpenAI embedding generation", leadId=lead_id):
            embedding = await self._embedder.embed(profile_text)

        tracker.advance(MatchState.SEARCHING_CANDIDATES)
        with timed("Similar students search", leadId=lead_id):
            candidates = await repo.nearest_neighbors(embedding, self.matching.retrieval_width)
        if not candidates:
            logger.info(NO_CANDIDATES, extra={"leadId": lead_id})
            return self._respond_empty(lead_id, NO_CANDIDATES, tracker, watch)

        tracker.advance(MatchState.RERANKING)
        with timed("LLM evaluation", leadId=lead_id, candidates=len(candidates)):
            matches = await self._reranker.rerank(profile_text, candidates, limit)

        tracker.advance(MatchState.PERSISTING)
        with timed("Insert matched students", leadId=lead_id, matches=len(matches)):
            await repo.upsert_matches(lead_id, matches)

        tracker.advance(MatchState.RESPONDING)
        elapsed = watch.elapsed_ms()
        logger.info(
            "Request completed successfully",
            extra={
                "leadId": lead_id,
                "totalSimilarFound": len(candidates),
                "matches": len(matches),
                "processingTimeMs": elapsed,
            },
        )
        return responses.success(lead_id, matches, elapsed)

    def _respond_empty(
        self,
        lead_id: str,
        message: str,
        tracker: _StateTracker,
        watch: Stopwatch,
    ) -> responses.ApiResponse:
        tracker.advance(MatchState.RESPONDING)
        return responses.short_circuit(lead_id, message, watch.elapsed_ms())

    def _fail(self, exc: Exception, tracker: _StateTracker, watch: Stopwatch) -> responses.ApiResponse:
        failed_in = tracker.state
        tracker.advance(MatchState.FAILED)
        elapsed = watch.elapsed_ms()
        cause = getattr(exc, "cause", None)

        log = logger.warning if isinstance(exc, ValidationError) else logger.error
        log(
            "Request failed",
            exc_info=not isinstance(exc, ValidationError),
            extra={
                "leadId": tracker.lead_id,
                "state": failed_in.value,
                "error": str(exc),
                "errorType": type(exc).__name__,
                "cause": str(cause) if cause is not None else None,
                "processingTimeMs": elapsed,
            },
        )
        log_memory_usage("Request error")
        return responses.failure(exc, elapsed)

    async def stored_matches(self, raw_lead_id: Any) -> responses.ApiResponse:
        """Return the matches last persisted for a lead."""
        watch = Stopwatch()
        try:
            lead_id, _ = self._validate(raw_lead_id, None)
            async with self._connection() as session:
                records = await self._repository_factory(session).list_matches(lead_id)
        except Exception as exc:
            return self._fail(exc, _StateTracker(), watch)

        return responses.ApiResponse(
            status_code=200,
            body={
                "recordId": lead_id,
                "matches": [{"matchedId": r.student_id, "reason": r.reason} for r in records],
                "processingTimeMs": watch.elapsed_ms(),
            },
        )
