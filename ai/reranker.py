"""LLM re-ranking of nearest-neighbor candidates.

Asks a chat model (JSON mode) to pick the strongest matches among the
retrieved students, then validates the answer against a strict schema before
anything flows further into the pipeline.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

import openai
from pydantic import ValidationError as SchemaError
from tenacity.wait import wait_base

from ai.client import retrying
from ai.prompts import RERANK_SYSTEM_PROMPT, build_rerank_prompt
from leadmatch.config import MatchingSettings, OpenAISettings
from leadmatch.errors import ExternalServiceError, ValidationError
from leadmatch.schemas import CandidateMatch, RankedMatch, RerankResponse

logger = logging.getLogger(__name__)


class RerankEvaluator:
    """Selects and justifies the final matches for a lead."""

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        *,
        model_name: str = "gpt-4o-mini",
        max_retries: int = 2,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._client = client
        self.model_name = model_name
        self.max_retries = max_retries
        self._retry_wait = retry_wait

    @classmethod
    def from_settings(
        cls,
        client: openai.AsyncOpenAI,
        matching_settings: MatchingSettings,
        openai_settings: OpenAISettings,
    ) -> RerankEvaluator:
        return cls(
            client,
            model_name=matching_settings.rerank_model,
            max_retries=openai_settings.max_retries,
        )

    async def rerank(
        self,
        profile_text: str,
        candidates: Sequence[CandidateMatch],
        limit: int,
    ) -> list[RankedMatch]:
        """Re-rank candidates for a lead profile.

        Args:
            profile_text: Lead profile text that was embedded
            candidates: Nearest-neighbor candidates, ascending distance
            limit: Maximum number of matches to return

        Returns:
            At most ``limit`` matches, all drawn from ``candidates``

        Raises:
            ValidationError: If the prompt inputs are unusable
            ExternalServiceError: If the model call fails or its output is malformed
        """
        if not profile_text.strip():
            raise ValidationError("Prompt for AI evaluation cannot be empty")
        if limit < 1:
            raise ValidationError(f"Limit must be at least 1, got {limit}")

        prompt = build_rerank_prompt(profile_text, candidates, limit)
        content = await self._complete(prompt)
        parsed = parse_rerank_response(content)
        return enforce_candidate_set(parsed.top_matches, candidates, limit)

    async def _complete(self, prompt: str) -> str:
        try:
            async for attempt in retrying(self.max_retries, self._retry_wait):
                with attempt:
                    response = await self._client.chat.completions.create(
                        model=self.model_name,
                        messages=[
                            {"role": "system", "content": RERANK_SYSTEM_PROMPT},
                            {"role": "user", "content": prompt},
                        ],
                        response_format={"type": "json_object"},
                    )
        except Exception as e:
            logger.error(f"Re-ranking request failed: {e}")
            raise ExternalServiceError("Failed to get AI evaluation", cause=e) from e

        choices = getattr(response, "choices", None)
        if not choices or getattr(choices[0], "message", None) is None:
            raise ExternalServiceError("Invalid response from OpenAI chat API")

        content = choices[0].message.content
        if not content:
            raise ExternalServiceError("Empty response content from OpenAI")
        return content


def parse_rerank_response(content: str) -> RerankResponse:
    """Validate the model's JSON answer.

    Raises:
        ExternalServiceError: If the content is not JSON, lacks a topMatches
            list, or has an item without a non-empty mongoId and reason
    """
    try:
        return RerankResponse.model_validate_json(content)
    except SchemaError as e:
        logger.error(f"AI response failed schema validation: {e.error_count()} errors")
        raise ExternalServiceError(
            f"AI response does not match the expected schema: {e.errors()[0]['msg']}",
            cause=e,
        ) from e


def enforce_candidate_set(
    matches: Sequence[RankedMatch],
    candidates: Sequence[CandidateMatch],
    limit: int,
) -> list[RankedMatch]:
    """Keep only matches whose id was offered to the model.

    Unknown ids are dropped and logged, repeated ids keep their first
    occurrence, and the result is cut to ``limit``.
    """
    allowed = {c.student_id for c in candidates}
    seen: set[str] = set()
    kept: list[RankedMatch] = []
    unknown: list[str] = []

    for match in matches:
        if match.matched_id not in allowed:
            unknown.append(match.matched_id)
            continue
        if match.matched_id in seen:
            continue
        seen.add(match.matched_id)
        kept.append(match)

    if unknown:
        logger.warning(
            "Model returned ids outside the candidate set",
            extra={"unknown_ids": ",".join(unknown), "dropped": len(unknown)},
        )
    if len(kept) > limit:
        logger.warning(f"Model returned {len(kept)} matches, truncating to {limit}")
        kept = kept[:limit]

    return kept
