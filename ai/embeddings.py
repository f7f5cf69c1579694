"""Embedding service for lead profile text.

Wraps the OpenAI embeddings endpoint with input validation, bounded retries
and strict checking of the returned vector. Nothing is cached: identical text
is embedded again on every request.
"""
from __future__ import annotations

import logging
import numbers

import openai
from tenacity.wait import wait_base

from ai.client import retrying
from leadmatch.config import EmbeddingSettings, OpenAISettings
from leadmatch.errors import ExternalServiceError, ValidationError
from leadmatch.models import EMBEDDING_DIM

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Produces one embedding vector per profile text."""

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        *,
        model_name: str = "text-embedding-3-large",
        dim: int | None = None,
        max_retries: int = 2,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Initialize the embedding client.

        Args:
            client: Configured async OpenAI client
            model_name: Embedding model identifier
            dim: Expected vector length; not checked when None
            max_retries: Retries after the first attempt on transient errors
            retry_wait: tenacity wait strategy between attempts
        """
        self._client = client
        self.model_name = model_name
        self.dim = dim
        self.max_retries = max_retries
        self._retry_wait = retry_wait

    @classmethod
    def from_settings(
        cls,
        client: openai.AsyncOpenAI,
        embedding_settings: EmbeddingSettings,
        openai_settings: OpenAISettings,
    ) -> EmbeddingClient:
        return cls(
            client,
            model_name=embedding_settings.model_name,
            dim=EMBEDDING_DIM,
            max_retries=openai_settings.max_retries,
        )

    async def embed(self, text: str) -> list[float]:
        """Compute the embedding for a single text.

        Args:
            text: Profile text to embed

        Returns:
            Embedding vector as a list of floats

        Raises:
            ValidationError: If text is empty after trimming
            ExternalServiceError: If the API call fails or returns a malformed vector
        """
        if not text or not text.strip():
            raise ValidationError("Text for embedding cannot be empty")

        try:
            async for attempt in retrying(self.max_retries, self._retry_wait):
                with attempt:
                    response = await self._client.embeddings.create(
                        model=self.model_name,
                        input=text,
                    )
        except Exception as e:
            logger.error(f"Embedding request failed: {e}")
            raise ExternalServiceError("Failed to generate embedding", cause=e) from e

        return self._validate(response)

    def _validate(self, response) -> list[float]:
        data = getattr(response, "data", None)
        if not data:
            raise ExternalServiceError("Invalid response from OpenAI embeddings API")

        embedding = getattr(data[0], "embedding", None)
        if not isinstance(embedding, list) or not embedding:
            raise ExternalServiceError("Invalid response from OpenAI embeddings API")
        if not all(isinstance(x, numbers.Real) and not isinstance(x, bool) for x in embedding):
            raise ExternalServiceError("Embedding vector contains non-numeric values")
        if self.dim is not None and len(embedding) != self.dim:
            raise ExternalServiceError(
                f"Embedding has {len(embedding)} dimensions, expected {self.dim}"
            )

        logger.debug(f"Computed embedding: {len(embedding)} dimensions")
        return [float(x) for x in embedding]
