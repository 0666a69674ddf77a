"""EmbeddingClient — async client for a local embedding endpoint."""

from __future__ import annotations

import logging
import math
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

import httpx

from filesense.config import EmbeddingConfig
from filesense.exceptions import EmbeddingUnavailableError
from filesense.utils import ensure_utc

if TYPE_CHECKING:
    from filesense.models.files import FileRecord

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 32
"""Hard limit on texts per request."""

_KIB = 1024
_MIB = 1024 * 1024


class EmbeddingClient:
    """Async embedding client for an Ollama-compatible ``/api/embed`` endpoint.

    A batch either succeeds as a whole or raises
    :class:`~filesense.exceptions.EmbeddingUnavailableError`; callers never
    see partial results.  The client applies no deadline of its own —
    wrap calls in ``asyncio.wait_for`` and treat expiry as unavailability.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=None)

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single string (a one-element batch)."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed up to :data:`MAX_BATCH_SIZE` strings, preserving order."""
        if not texts:
            return []
        if len(texts) > MAX_BATCH_SIZE:
            msg = f"Batch of {len(texts)} exceeds the limit of {MAX_BATCH_SIZE} texts"
            raise ValueError(msg)

        url = f"{self._config.base_url}/api/embed"
        try:
            response = await self._http.post(
                url, json={"model": self._config.model, "input": texts}
            )
        except httpx.HTTPError as e:
            msg = f"Embedding request to {url} failed: {e}"
            raise EmbeddingUnavailableError(msg) from e

        if response.status_code >= 400:
            msg = f"Embedding endpoint returned {response.status_code}: {response.text[:300]}"
            raise EmbeddingUnavailableError(msg)

        try:
            payload = response.json()
        except ValueError as e:
            msg = "Embedding endpoint returned a non-JSON body"
            raise EmbeddingUnavailableError(msg) from e

        return _validate_vectors(payload, expected=len(texts))

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._config.model

    # ------------------------------------------------------------------
    # Availability / lifecycle
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        """Return whether the endpoint answers at all."""
        try:
            response = await self._http.get(f"{self._config.base_url}/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code < 500

    async def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()


def _validate_vectors(payload: Any, *, expected: int) -> list[list[float]]:
    """Check the response shape; any defect fails the whole batch."""
    vectors = payload.get("embeddings") if isinstance(payload, dict) else None
    if not isinstance(vectors, list) or len(vectors) != expected:
        got = len(vectors) if isinstance(vectors, list) else "no"
        msg = f"Expected {expected} embeddings, got {got}"
        raise EmbeddingUnavailableError(msg)

    result: list[list[float]] = []
    width: int | None = None
    for vector in vectors:
        if not isinstance(vector, list) or not vector:
            msg = "Embedding response contains an empty or non-list vector"
            raise EmbeddingUnavailableError(msg)
        if not all(
            isinstance(x, int | float) and not isinstance(x, bool) and math.isfinite(x)
            for x in vector
        ):
            msg = "Embedding response contains non-numeric values"
            raise EmbeddingUnavailableError(msg)
        if width is None:
            width = len(vector)
        elif len(vector) != width:
            msg = f"Embedding response mixes vector lengths {width} and {len(vector)}"
            raise EmbeddingUnavailableError(msg)
        result.append([float(x) for x in vector])
    return result


# ---------------------------------------------------------------------------
# Composite text
# ---------------------------------------------------------------------------


def size_bucket(size_bytes: int) -> str:
    """Coarse size label used in the embedded text."""
    if size_bytes < _KIB:
        return "tiny"
    if size_bytes < 100 * _KIB:
        return "small"
    if size_bytes < 10 * _MIB:
        return "medium"
    return "large"


def build_embedding_text(
    record: FileRecord,
    content: str | None = None,
    *,
    max_tokens: int = 256,
) -> str:
    """Build the text embedded for *record*.

    Filename, extension, the last three path components, a size bucket and
    the month of last modification, joined by ``" | "``.  When *content* is
    given (text files under the content ceiling), its first *max_tokens*
    whitespace-separated tokens are appended.
    """
    parts = PurePath(record.path).parts
    tail = "/".join(parts[-3:])
    recency = ensure_utc(record.modified_at).strftime("%B %Y")
    text = " | ".join(
        [record.name, record.extension or "", tail, size_bucket(record.size_bytes), recency]
    )
    if content:
        tokens = content.split()[:max_tokens]
        if tokens:
            text = f"{text} | {' '.join(tokens)}"
    return text
