"""Shared fixtures: in-memory repository, fake connections and OpenAI doubles."""
from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from tenacity import wait_none

from ai.embeddings import EmbeddingClient
from ai.reranker import RerankEvaluator
from leadmatch.config import MatchingSettings
from leadmatch.errors import NotFoundError
from leadmatch.pipelines.matching import LeadMatcher
from leadmatch.schemas import CandidateMatch, LeadRecord, MatchRecord

FULL_LEAD = {
    "bachelor_school": "National Taiwan University",
    "bachelor_program_name": "Computer Science",
    "bachelor_gpa": "3.8",
    "master_school": "-",
    "master_program_name": None,
    "master_gpa": "",
    "intended_program_level": "Master",
    "intended_programs": "MS Computer Science",
    "intended_direction": "Machine Learning",
}


def make_candidates(n: int) -> list[CandidateMatch]:
    return [
        CandidateMatch(student_id=f"student_{i}", text=f"Profile {i}", distance=0.1 + i * 0.01)
        for i in range(n)
    ]


def embedding_response(vector):
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


def chat_response(content):
    if not isinstance(content, str) and content is not None:
        content = json.dumps(content, ensure_ascii=False)
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeRepository:
    """In-memory stand-in for LeadRepository with the same write semantics."""

    def __init__(self, leads: dict[str, dict] | None = None, candidates: list[CandidateMatch] | None = None):
        self.leads = leads or {}
        self.candidates = candidates or []
        self.rows: list[MatchRecord] = []
        self.fail_on: dict[str, Exception] = {}

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise self.fail_on[op]

    async def fetch_lead(self, lead_id: str) -> LeadRecord:
        self._maybe_fail("fetch_lead")
        if lead_id not in self.leads:
            raise NotFoundError(f"Lead with ID {lead_id} not found")
        return LeadRecord(id=lead_id, attributes=dict(self.leads[lead_id]))

    async def nearest_neighbors(self, embedding, limit):
        self._maybe_fail("nearest_neighbors")
        return sorted(self.candidates, key=lambda c: c.distance)[:limit]

    async def upsert_matches(self, lead_id, matches):
        self._maybe_fail("upsert_matches")
        if not matches:
            return
        self.rows = [r for r in self.rows if r.lead_id != lead_id]
        seen = set()
        for m in matches:
            if m.matched_id in seen:
                continue
            seen.add(m.matched_id)
            self.rows.append(MatchRecord(lead_id=lead_id, student_id=m.matched_id, reason=m.reason))

    async def list_matches(self, lead_id):
        return [r for r in self.rows if r.lead_id == lead_id]


class FakeConnection:
    """Counts closes of the connection and of the session bound to it."""

    def __init__(self):
        self.closed = 0
        self.session_closed = 0

    async def close(self):
        self.closed += 1


class FakeSession:
    def __init__(self, bind: FakeConnection):
        self.bind = bind

    async def close(self):
        self.bind.session_closed += 1


@pytest.fixture
def repo():
    return FakeRepository(
        leads={"lead_1": dict(FULL_LEAD)},
        candidates=make_candidates(12),
    )


@pytest.fixture
def connections():
    return []


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.embeddings.create = AsyncMock(return_value=embedding_response([0.1, 0.2, 0.3]))
    client.chat.completions.create = AsyncMock(
        return_value=chat_response(
            {
                "topMatches": [
                    {"mongoId": "student_0", "reason": "繁中: 同系所 | EN: Same CS program"},
                    {"mongoId": "student_3", "reason": "繁中: GPA相近 | EN: Similar GPA"},
                ]
            }
        )
    )
    return client


@pytest.fixture
def embedder(openai_client):
    return EmbeddingClient(openai_client, dim=None, retry_wait=wait_none())


@pytest.fixture
def reranker(openai_client):
    return RerankEvaluator(openai_client, retry_wait=wait_none())


@pytest.fixture
def make_matcher(repo, connections, embedder, reranker):
    def factory(connect_error: Exception | None = None, **overrides) -> LeadMatcher:
        async def connect():
            if connect_error is not None:
                raise connect_error
            connection = FakeConnection()
            connections.append(connection)
            return connection

        return LeadMatcher(
            connect,
            overrides.get("embedder", embedder),
            overrides.get("reranker", reranker),
            session_factory=FakeSession,
            matching=MatchingSettings(),
            repository_factory=lambda session: repo,
        )

    return factory


@pytest.fixture
def matcher(make_matcher):
    return make_matcher()
