"""Custom exception hierarchy for filesense."""


class FileSenseError(Exception):
    """Base exception for all filesense errors."""


class EmbeddingUnavailableError(FileSenseError):
    """Raised when the embedding endpoint is unreachable or returns a malformed batch."""


class SuggestionNotFoundError(FileSenseError):
    """Raised when a suggestion id does not exist."""


class InvalidTransitionError(FileSenseError):
    """Raised when a suggestion lifecycle transition is not allowed from its current status."""


class StagingError(FileSenseError):
    """Raised when an accepted suggestion cannot be staged or completed."""


class ChecksumMismatchError(StagingError):
    """Raised when a staged copy or archive member does not match its recorded checksum."""


class ManifestCorruptedError(FileSenseError):
    """Raised when a staging manifest is unreadable, incomplete, or inconsistent."""
