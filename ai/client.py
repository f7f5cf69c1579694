"""Shared OpenAI client construction and retry policy.

The SDK's own retry loop is disabled; retries go through tenacity so the
embedding and chat calls share one bounded, logged policy.
"""
from __future__ import annotations

import logging

import openai
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from leadmatch.config import OpenAISettings

logger = logging.getLogger(__name__)

# Transient failures worth another attempt. APITimeoutError is an
# APIConnectionError subclass.
RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

DEFAULT_WAIT = wait_exponential(multiplier=0.5, min=0.5, max=4)


def create_openai_client(openai_settings: OpenAISettings) -> openai.AsyncOpenAI:
    """Create the async OpenAI client used by both AI services."""
    return openai.AsyncOpenAI(
        api_key=openai_settings.api_key.get_secret_value(),
        timeout=openai_settings.timeout,
        max_retries=0,
    )


def retrying(max_retries: int, wait: wait_base | None = None) -> AsyncRetrying:
    """Retry policy: first attempt plus ``max_retries`` retries on transient errors."""
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait or DEFAULT_WAIT,
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
