"""FileEmbedding model — one stored vector per file."""

from __future__ import annotations

from datetime import UTC, datetime

import numpy as np
from sqlalchemy import DateTime, LargeBinary
from sqlmodel import Field, SQLModel


class FileEmbedding(SQLModel, table=True):
    """Latest embedding of a file.

    ``content_fingerprint`` is the sha256 of the composite text that was
    embedded; a different fingerprint on the next pass means the row is
    stale and gets replaced.
    """

    __tablename__ = "file_embeddings"

    id: int | None = Field(default=None, primary_key=True)
    file_id: int = Field(index=True, unique=True)
    vector: bytes = Field(sa_type=LargeBinary)
    dimensions: int = Field(default=0)
    model_name: str = Field(default="")
    content_fingerprint: str = Field(default="")
    embedded_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )


def encode_vector(vector: list[float] | np.ndarray) -> bytes:
    """Pack a vector as little-endian float32 bytes."""
    return np.asarray(vector, dtype="<f4").tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Unpack little-endian float32 bytes into a 1-D array."""
    return np.frombuffer(blob, dtype="<f4")
