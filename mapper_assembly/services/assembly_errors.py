from __future__ import annotations


class AssemblyError(Exception):
    """Base class for failures that abort assembly of a single statement."""

    error_id = "ASSEMBLY_FAILED"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_error(self) -> dict[str, str]:
        return {"id": self.error_id, "message": self.message}


class MalformedContentError(AssemblyError):
    """Raised when a content node stream is structurally inconsistent."""

    error_id = "MALFORMED_INPUT"


class ExpansionLimitExceededError(AssemblyError):
    """Raised when one top-level expansion visits more nodes than allowed."""

    error_id = "EXPANSION_LIMIT_EXCEEDED"

    def __init__(self, max_visits: int) -> None:
        super().__init__(f"Expansion visit limit exceeded. max_visits={max_visits}.")
        self.max_visits = max_visits


class ExpansionDepthExceededError(AssemblyError):
    """Raised when an include chain nests deeper than allowed."""

    error_id = "EXPANSION_DEPTH_EXCEEDED"

    def __init__(self, max_depth: int, at: object = None) -> None:
        location = f" at={at}" if at is not None else ""
        super().__init__(f"Include nesting depth exceeded. max_depth={max_depth}{location}.")
        self.max_depth = max_depth


class MapperParseError(AssemblyError):
    """Raised when mapper XML cannot be turned into a mapper document."""

    error_id = "MAPPER_PARSE_ERROR"

    def __init__(self, message: str, source: str | None = None) -> None:
        if source:
            message = f"{source}: {message}"
        super().__init__(message)
        self.source = source
