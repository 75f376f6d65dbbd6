"""Typed failures raised by the matching pipeline.

Expected outcomes (cache miss, stale artifact, failed run) are values, not
exceptions. Everything here is either a data-integrity bug in a caller or a
generation call that produced something we refuse to store.
"""


class MatchingError(Exception):
    """Base class for all pipeline errors."""


class InvalidVersionTransition(MatchingError, ValueError):
    """A profile_version update would decrement, repeat, or skip a version."""

    def __init__(self, old_version: int, new_version: int, reason: str) -> None:
        self.old_version = old_version
        self.new_version = new_version
        super().__init__(reason)


class VersionOverflow(MatchingError, ValueError):
    """A profile_version went past MAX_PROFILE_VERSION."""

    def __init__(self, version: int, maximum: int) -> None:
        self.version = version
        self.maximum = maximum
        super().__init__(f"Version exceeds maximum ({maximum}): {version}")


class InvalidGenerationOutput(MatchingError, ValueError):
    """An LLM response failed JSON parsing or schema validation.

    ``diagnostics`` holds one human-readable line per problem so callers can
    log or surface them without re-parsing the pydantic error.
    """

    def __init__(self, message: str, diagnostics: list[str] | None = None) -> None:
        self.diagnostics = list(diagnostics or [])
        if self.diagnostics:
            message = f"{message}: " + "; ".join(self.diagnostics)
        super().__init__(message)


class BatchIdentityMismatch(MatchingError, ValueError):
    """A batch call returned a different set of job ids than it was given."""

    def __init__(self, operation: str, missing: set[str], unexpected: set[str]) -> None:
        self.operation = operation
        self.missing = set(missing)
        self.unexpected = set(unexpected)
        parts = []
        if self.missing:
            parts.append(f"missing {sorted(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected {sorted(self.unexpected)}")
        super().__init__(f"{operation} batch id mismatch: " + ", ".join(parts))


class InvalidStateTransition(MatchingError, ValueError):
    """A queue item or run was asked to move along an edge its state machine lacks."""


class RunNotFound(MatchingError, LookupError):
    """No agent run exists with the requested id."""
