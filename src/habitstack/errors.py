# src/habitstack/errors.py


class HabitStackError(Exception):
    """Base class for every error the habit core raises."""


class RemoteError(HabitStackError):
    """A Supabase call failed; ``error`` holds what the backend reported."""

    def __init__(self, message: str, error=None):
        super().__init__(message)
        self.error = error


class StorageError(HabitStackError):
    """Local store read or write failed."""


class ValidationError(HabitStackError):
    """Required input is missing or points at something that does not exist."""
