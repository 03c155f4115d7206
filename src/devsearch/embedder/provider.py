"""Embedder protocol for pluggable embedding backends."""

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable


@runtime_checkable
class Embedder(Protocol):
    """Maps text to fixed-width vectors."""

    @property
    def dimensions(self) -> int:
        """Width of every vector this embedder returns."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Raises EmbeddingError on provider failure."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, one vector per input in input order."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class BaseEmbedder(ABC):
    """Shared behaviour for remote embedders.

    Empty or whitespace-only text embeds to the zero vector without a
    provider call. Subclasses implement ``_embed_one`` and may override
    ``embed_batch`` with a native batched call.
    """

    def __init__(self, dimensions: int) -> None:
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def zero_vector(self) -> list[float]:
        return [0.0] * self._dimensions

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            return self.zero_vector()
        return await self._embed_one(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(text) for text in texts]

    @abstractmethod
    async def _embed_one(self, text: str) -> list[float]:
        """Embed one non-empty text."""

    async def close(self) -> None:
        """Release resources."""


def is_zero_vector(vec: list[float] | None) -> bool:
    """True for a missing vector or one with no non-zero component."""
    return vec is None or not any(vec)
