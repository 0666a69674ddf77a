"""EmbeddingProvider protocol."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding providers.

    Implementations convert text into fixed-dimension float vectors.
    Methods may be sync or async; callers go through :func:`embed_batch`.
    """

    def embed(self, text: str) -> list[float] | Awaitable[list[float]]:
        """Embed a single text string into a vector."""
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]] | Awaitable[list[list[float]]]:
        """Embed multiple texts into vectors, preserving order."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


async def embed_batch(provider: EmbeddingProvider, texts: list[str]) -> list[list[float]]:
    """Embed a batch of texts, handling both sync and async providers."""
    result = provider.embed_batch(texts)
    if inspect.isawaitable(result):
        return await result
    return result
