"""SQLModel database models for filesense."""

from filesense.models.edges import EdgeKind, FileEdge
from filesense.models.embeddings import FileEmbedding, decode_vector, encode_vector
from filesense.models.entropy import EntropyScore
from filesense.models.files import FileRecord
from filesense.models.hashes import FileContentHash
from filesense.models.suggestions import (
    Suggestion,
    SuggestionKind,
    SuggestionStatus,
    suggestion_fingerprint,
)

__all__ = [
    "EdgeKind",
    "EntropyScore",
    "FileContentHash",
    "FileEdge",
    "FileEmbedding",
    "FileRecord",
    "Suggestion",
    "SuggestionKind",
    "SuggestionStatus",
    "decode_vector",
    "encode_vector",
    "suggestion_fingerprint",
]
