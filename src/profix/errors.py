from __future__ import annotations


class ProFixError(Exception):
    """Base class for every error ProFix reports to a user."""


class EmptySelection(ProFixError):
    """Raised when the selection is empty after trimming whitespace."""

    def __init__(self, message: str = "No text selected.") -> None:
        super().__init__(message)


class MalformedResponse(ProFixError):
    """Raised when the model reply cannot be parsed as a JSON array."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class SchemaViolation(ProFixError):
    """
    A single parsed element that does not match the finding schema.

    Validation records these instead of raising them so one bad element never
    invalidates the rest of the batch.
    """


class TargetLineNotFound(ProFixError):
    """Raised when a finding's line no longer exists in the document."""

    def __init__(self, relative_line: int, absolute_line: int) -> None:
        super().__init__(f"Cannot find target line {relative_line}")
        self.relative_line = relative_line
        self.absolute_line = absolute_line


class EditRejected(ProFixError):
    """Raised when the document refuses a line replacement (e.g. read-only)."""


class ModelError(ProFixError):
    """Raised when the model collaborator fails to produce a reply."""


class ConfigError(ProFixError, ValueError):
    """Raised when a ProFix configuration file is invalid."""
