"""
Exception types for the ledger projection indexer.
"""


class IndexerError(Exception):
    """Base class for all indexer errors."""
    pass


class DecodeError(IndexerError):
    """Raised when a recognized log record has a malformed payload."""
    pass


class MissingDependencyError(IndexerError):
    """Raised when an event references an aggregate not yet projected."""
    pass


class InvalidTransitionError(IndexerError):
    """Raised when no handler is registered or a state transition is illegal."""
    pass


class LedgerError(IndexerError):
    """Raised when a ledger query fails permanently."""
    pass


class LedgerTransientError(LedgerError):
    """Raised on timeouts, throttling and other retryable ledger failures."""
    pass


class LedgerUnavailableError(LedgerError):
    """Raised when retries against the ledger are exhausted."""
    pass


class CheckpointError(IndexerError):
    """Raised when checkpoint operations fail."""
    pass


class RangeOverlapError(CheckpointError):
    """Raised when a run would start at or before a committed checkpoint."""
    pass


class RunInProgressError(CheckpointError):
    """Raised when a source already has an in-flight run."""
    pass


class DataDirLockedError(RunInProgressError):
    """Raised when another process owns the data directory."""
    pass


class IntegrityError(IndexerError):
    """Raised when a projection snapshot fails its state hash check."""
    pass


class ConfigError(IndexerError):
    """Raised when required configuration is missing or invalid."""
    pass
