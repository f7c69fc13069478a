from __future__ import annotations


class DecodeError(ValueError):
    """Raised when a GitHub response body does not have the expected shape."""
    pass


class StoreError(Exception):
    """
    Raised for any store failure that is not the benign unique-key race
    of two workers discovering the same record.
    """
    pass


class QueueClosedError(RuntimeError):
    """Raised when a task is pushed onto a queue that has already closed."""
    pass
