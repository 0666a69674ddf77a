"""Tests for EmbeddingClient and the composite embedding text."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import httpx
import pytest

from filesense.config import EmbeddingConfig
from filesense.exceptions import EmbeddingUnavailableError
from filesense.models.files import FileRecord
from filesense.search.embedding_client import (
    MAX_BATCH_SIZE,
    EmbeddingClient,
    build_embedding_text,
    size_bucket,
)

_CONFIG = EmbeddingConfig(base_url="http://embed.test", model="test-model")


def _client(handler) -> EmbeddingClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EmbeddingClient(_CONFIG, http_client=http)


def _echo_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    vectors = [[float(len(t)), 1.0, 0.0] for t in body["input"]]
    return httpx.Response(200, json={"embeddings": vectors})


# ==================================================================
# embed_batch
# ==================================================================


class TestEmbedBatch:
    @pytest.mark.asyncio
    async def test_posts_model_and_input(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/embed"
            seen.append(json.loads(request.content))
            return _echo_handler(request)

        client = _client(handler)
        vectors = await client.embed_batch(["a", "bbb"])
        assert vectors == [[1.0, 1.0, 0.0], [3.0, 1.0, 0.0]]
        assert seen == [{"model": "test-model", "input": ["a", "bbb"]}]

    @pytest.mark.asyncio
    async def test_embed_single(self):
        client = _client(_echo_handler)
        assert await client.embed("hello") == [5.0, 1.0, 0.0]

    @pytest.mark.asyncio
    async def test_empty_batch_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = _client(handler)
        assert await client.embed_batch([]) == []

    @pytest.mark.asyncio
    async def test_oversized_batch_rejected(self):
        client = _client(_echo_handler)
        with pytest.raises(ValueError, match="exceeds"):
            await client.embed_batch(["x"] * (MAX_BATCH_SIZE + 1))

    @pytest.mark.asyncio
    async def test_full_batch_accepted(self):
        client = _client(_echo_handler)
        vectors = await client.embed_batch(["x"] * MAX_BATCH_SIZE)
        assert len(vectors) == MAX_BATCH_SIZE

    def test_model_name(self):
        assert _client(_echo_handler).model_name == "test-model"


class TestEmbedBatchFailures:
    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(EmbeddingUnavailableError, match="failed"):
            await _client(handler).embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = _client(lambda r: httpx.Response(503, text="loading"))
        with pytest.raises(EmbeddingUnavailableError, match="503"):
            await client.embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = _client(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(EmbeddingUnavailableError, match="non-JSON"):
            await client.embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_wrong_count(self):
        client = _client(lambda r: httpx.Response(200, json={"embeddings": [[1.0]]}))
        with pytest.raises(EmbeddingUnavailableError, match="Expected 2"):
            await client.embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_missing_key(self):
        client = _client(lambda r: httpx.Response(200, json={"data": []}))
        with pytest.raises(EmbeddingUnavailableError):
            await client.embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_empty_vector(self):
        client = _client(lambda r: httpx.Response(200, json={"embeddings": [[]]}))
        with pytest.raises(EmbeddingUnavailableError, match="empty"):
            await client.embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_non_numeric_values(self):
        client = _client(lambda r: httpx.Response(200, json={"embeddings": [[1.0, "x"]]}))
        with pytest.raises(EmbeddingUnavailableError, match="non-numeric"):
            await client.embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_boolean_values_rejected(self):
        client = _client(lambda r: httpx.Response(200, json={"embeddings": [[True, 1.0]]}))
        with pytest.raises(EmbeddingUnavailableError):
            await client.embed_batch(["a"])

    @pytest.mark.asyncio
    async def test_ragged_batch(self):
        payload = {"embeddings": [[1.0, 2.0], [1.0]]}
        client = _client(lambda r: httpx.Response(200, json=payload))
        with pytest.raises(EmbeddingUnavailableError, match="mixes"):
            await client.embed_batch(["a", "b"])


class TestAvailability:
    @pytest.mark.asyncio
    async def test_available(self):
        client = _client(lambda r: httpx.Response(200, json={"models": []}))
        assert await client.is_available() is True

    @pytest.mark.asyncio
    async def test_unavailable_on_connect_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        assert await _client(handler).is_available() is False

    @pytest.mark.asyncio
    async def test_unavailable_on_server_error(self):
        assert await _client(lambda r: httpx.Response(500)).is_available() is False

    @pytest.mark.asyncio
    async def test_close_leaves_shared_client_open(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(_echo_handler))
        client = EmbeddingClient(_CONFIG, http_client=http)
        await client.close()
        assert not http.is_closed
        await http.aclose()


# ==================================================================
# Composite text
# ==================================================================


class TestSizeBucket:
    @pytest.mark.parametrize(
        ("size", "bucket"),
        [(0, "tiny"), (1023, "tiny"), (1024, "small"), (200 * 1024, "medium"),
         (20 * 1024 * 1024, "large")],
    )
    def test_buckets(self, size, bucket):
        assert size_bucket(size) == bucket


class TestBuildEmbeddingText:
    def _record(self, **kw) -> FileRecord:
        defaults = {
            "path": "/home/ana/projects/finance/q3_report.md",
            "name": "q3_report.md",
            "extension": ".md",
            "size_bytes": 2048,
            "modified_at": datetime(2024, 3, 5, tzinfo=UTC),
            "parent_path": "/home/ana/projects/finance",
        }
        defaults.update(kw)
        return FileRecord(**defaults)

    def test_metadata_only(self):
        text = build_embedding_text(self._record())
        assert text == "q3_report.md | .md | projects/finance/q3_report.md | small | March 2024"

    def test_content_tokens_appended(self):
        text = build_embedding_text(self._record(), "revenue  grew\nstrongly", max_tokens=2)
        assert text.endswith(" | revenue grew")

    def test_blank_content_ignored(self):
        assert build_embedding_text(self._record(), "   \n") == build_embedding_text(
            self._record()
        )

    def test_naive_timestamp_treated_as_utc(self):
        text = build_embedding_text(self._record(modified_at=datetime(2023, 12, 31, 23, 0)))
        assert text.endswith("December 2023")
