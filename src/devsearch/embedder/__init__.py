"""Embedding providers."""

import logging

from devsearch.config import Settings
from devsearch.embedder.gemini import GeminiEmbedder
from devsearch.embedder.ollama import OllamaEmbedder
from devsearch.embedder.provider import BaseEmbedder, Embedder, is_zero_vector

logger = logging.getLogger(__name__)

__all__ = [
    "BaseEmbedder",
    "Embedder",
    "GeminiEmbedder",
    "OllamaEmbedder",
    "create_embedder",
    "is_zero_vector",
]


def create_embedder(settings: Settings) -> Embedder | None:
    """Create the configured embedder, or None for lexical-only mode."""
    provider = settings.embedding_provider
    if provider == "gemini":
        if not settings.gemini_api_key:
            logger.warning("GEMINI_API_KEY not set, semantic ranking disabled")
            return None
        return GeminiEmbedder(
            settings.gemini_api_key,
            model=settings.gemini_model,
            dimensions=settings.embedding_dim,
            base_url=settings.gemini_url,
            timeout=settings.embedding_timeout,
        )
    if provider == "ollama":
        return OllamaEmbedder(
            url=settings.ollama_url,
            model=settings.ollama_model,
            dimensions=settings.embedding_dim,
            timeout=settings.embedding_timeout,
        )
    return None
