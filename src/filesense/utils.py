"""Shared helpers: text-file detection, string distance, hashing, time."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from pathlib import Path

# =============================================================================
# Text File Detection
# =============================================================================

TEXT_EXTENSIONS = {
    # Programming languages
    ".py", ".js", ".ts", ".jsx", ".tsx", ".java", ".c", ".cpp", ".h", ".hpp",
    ".cs", ".go", ".rs", ".rb", ".php", ".swift", ".kt", ".scala", ".r",
    ".lua", ".sh", ".bash", ".zsh", ".ps1", ".bat",
    # Web
    ".html", ".htm", ".css", ".scss", ".vue", ".svelte",
    # Data/Config
    ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".env",
    ".xml", ".csv", ".tsv",
    # Documentation
    ".md", ".markdown", ".rst", ".txt", ".text", ".adoc", ".tex", ".org",
    # Other text formats
    ".sql", ".log", ".graphql", ".proto", ".tf",
}

# Files without extensions that are text
TEXT_FILENAMES = {
    "Makefile", "Dockerfile", "Jenkinsfile", "Procfile", "Gemfile", "Rakefile",
    "LICENSE", "README", "CHANGELOG", "CONTRIBUTING", "AUTHORS",
}

HASH_CHUNK_SIZE = 1024 * 1024


def is_text_file(filename: str) -> bool:
    """Check if a file is a text file based on extension or name."""
    path = Path(filename)
    ext = path.suffix.lower()

    if ext and ext in TEXT_EXTENSIONS:
        return True

    return path.name in TEXT_FILENAMES


def file_stem(name: str) -> str:
    """Filename without its last extension (``"a.tar.gz"`` → ``"a.tar"``)."""
    return Path(name).stem


# =============================================================================
# String Distance
# =============================================================================


def levenshtein(a: str, b: str) -> int:
    """Calculate Levenshtein distance between two strings."""
    if a == "" or b == "":
        return max(len(a), len(b))

    previous = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        current = [i] + [0] * len(b)
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current

    return previous[len(b)]


def string_similarity(a: str, b: str) -> float:
    """Levenshtein distance normalised to a similarity in [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


# =============================================================================
# Hashing
# =============================================================================


def sha256_file(path: str | Path) -> str:
    """Stream *path* through sha256 and return the hex digest."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as f:
        while chunk := f.read(HASH_CHUNK_SIZE):
            digest.update(chunk)
    return digest.hexdigest()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


# =============================================================================
# Time
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
