"""Backend package: settings, DB models, repository, pipelines and APIs.

This package orchestrates lead lookup, profile projection, embedding
retrieval, LLM re-ranking and idempotent match persistence.
"""
