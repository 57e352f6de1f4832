from __future__ import annotations


class StoryweaveError(Exception):
    """Base class for every error raised by storyweave."""


class NotFoundError(StoryweaveError, LookupError):
    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class SizeLimitError(StoryweaveError, ValueError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Memory bank data exceeds size limit: {size} > {limit}")
        self.size = size
        self.limit = limit


class ValidationError(StoryweaveError, ValueError):
    """Malformed element, hint, bank payload or snapshot shape."""


class InvalidTransitionError(ValidationError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Status can only move forward: {current} -> {requested}")
        self.current = current
        self.requested = requested


class VersionConflictError(StoryweaveError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Store version mismatch: expected {expected}, found {actual}")
        self.expected = expected
        self.actual = actual
