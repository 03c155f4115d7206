"""Gemini embedding client (Generative Language REST API)."""

import logging
from typing import Any

import httpx

from devsearch.embedder.provider import BaseEmbedder
from devsearch.errors import EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-embedding-001"


class GeminiEmbedder(BaseEmbedder):
    """Generates embeddings via Gemini's embedContent/batchEmbedContents endpoints.

    Requests ask for ``outputDimensionality`` equal to ``dimensions`` so the
    vectors fit the store's column width.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        dimensions: int = 1536,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize with an API key and optional HTTP client."""
        super().__init__(dimensions)
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http = http_client

    async def _embed_one(self, text: str) -> list[float]:
        data = await self._post(":embedContent", self._request(text))
        try:
            values = data["embedding"]["values"]
        except (KeyError, TypeError) as e:
            raise EmbeddingError("Gemini response missing embedding values") from e
        return self._check([float(v) for v in values])

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts with one provider call.

        Empty inputs get zero vectors and are left out of the request;
        results are placed back at their input positions.
        """
        results: list[list[float] | None] = [None] * len(texts)
        pending: list[int] = []
        for i, text in enumerate(texts):
            if text.strip():
                pending.append(i)
            else:
                results[i] = self.zero_vector()

        if pending:
            payload = {"requests": [self._request(texts[i]) for i in pending]}
            data = await self._post(":batchEmbedContents", payload)
            try:
                embeddings = data["embeddings"]
                vectors = [[float(v) for v in e["values"]] for e in embeddings]
            except (KeyError, TypeError) as e:
                raise EmbeddingError("Gemini batch response missing embeddings") from e
            if len(vectors) != len(pending):
                raise EmbeddingError(
                    f"Gemini returned {len(vectors)} embeddings for {len(pending)} inputs"
                )
            for i, vec in zip(pending, vectors, strict=True):
                results[i] = self._check(vec)

        return [vec if vec is not None else self.zero_vector() for vec in results]

    def _request(self, text: str) -> dict[str, Any]:
        return {
            "model": f"models/{self._model}",
            "content": {"parts": [{"text": text}]},
            "outputDimensionality": self.dimensions,
        }

    def _check(self, vec: list[float]) -> list[float]:
        if len(vec) != self.dimensions:
            raise EmbeddingError(
                f"Gemini returned {len(vec)} dimensions, expected {self.dimensions}"
            )
        return vec

    async def _post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/models/{self._model}{method}"
        try:
            resp = await self._get_client().post(
                url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                f"Gemini request failed with status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingError(f"Gemini request failed: {e}") from e
        return data

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if open."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
