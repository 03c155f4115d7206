"""Ollama embedding client."""

import logging
from typing import Any

import httpx

from devsearch.embedder.provider import BaseEmbedder
from devsearch.errors import EmbeddingError

logger = logging.getLogger(__name__)


class OllamaEmbedder(BaseEmbedder):
    """Generates embeddings via Ollama's /api/embed endpoint."""

    def __init__(
        self,
        *,
        url: str = "http://localhost:11434",
        model: str = "qwen3-embedding:0.6b",
        dimensions: int = 1024,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with server settings and an optional HTTP client."""
        super().__init__(dimensions)
        self._url = url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._http = http_client

    async def _embed_one(self, text: str) -> list[float]:
        return (await self._embed([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed non-empty texts in one request; empty ones get zero vectors."""
        pending = [i for i, text in enumerate(texts) if text.strip()]
        results = [self.zero_vector() for _ in texts]
        if pending:
            vectors = await self._embed([texts[i] for i in pending])
            for i, vec in zip(pending, vectors, strict=True):
                results[i] = vec
        return results

    async def _embed(self, inputs: list[str]) -> list[list[float]]:
        try:
            resp = await self._get_client().post(
                f"{self._url}/api/embed",
                json={"model": self._model, "input": inputs, "dimensions": self.dimensions},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
            # Ollama /api/embed returns {"embeddings": [[...], ...]}
            vectors = [[float(v) for v in e] for e in data["embeddings"]]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise EmbeddingError(f"Ollama embedding failed: {e}") from e
        if len(vectors) != len(inputs):
            raise EmbeddingError(f"Ollama returned {len(vectors)} embeddings for {len(inputs)}")
        for vec in vectors:
            if len(vec) != self.dimensions:
                raise EmbeddingError(
                    f"Ollama returned {len(vec)} dimensions, expected {self.dimensions}"
                )
        return vectors

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if open."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
