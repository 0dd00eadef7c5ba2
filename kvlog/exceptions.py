"""Error taxonomy shared by the versioned store and its backends."""


class KVLogError(Exception):
    """Base class for every error raised by kvlog."""


class NotFound(KVLogError, KeyError):
    """No history entry or value record exists for the requested key or id."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else "not found"


class DuplicateVersion(KVLogError):
    """An entry with the same (key, timestamp) already exists."""

    def __init__(self, key: str, timestamp: int):
        super().__init__(f"Version {timestamp} already exists for key {key!r}")
        self.key = key
        self.timestamp = timestamp


class BackendError(KVLogError):
    """Unclassified failure of the backing store."""


class Cancelled(KVLogError):
    """The caller cancelled the operation."""


class DeadlineExceeded(Cancelled):
    """The caller's deadline passed before the operation completed."""
