"""Exception hierarchy for the duration estimation engine."""

from __future__ import annotations


class KairosError(Exception):
    """Base class for all Kairos errors."""


class InvalidDuration(KairosError, ValueError):
    """A recorded duration was zero, negative or not finite."""

    def __init__(self, service_id: str, duration_ms: float) -> None:
        self.service_id = service_id
        self.duration_ms = duration_ms
        super().__init__(
            f"Duration for {service_id!r} must be a positive finite number, got {duration_ms}"
        )


class InvalidServiceId(KairosError, ValueError):
    """A service id was empty or contained the model key separator ':'."""

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"Invalid service id {service_id!r}: must be non-empty and contain no ':'")


class PersistenceFailure(KairosError):
    """The metrics document could not be read or written.

    The in-memory store stays usable after a failed save.
    """

    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Metrics file {path}: {reason}")


class SchemaMismatch(KairosError):
    """A stored document was written by a different feature schema version."""

    def __init__(self, stored: str | None, expected: str) -> None:
        self.stored = stored
        self.expected = expected
        super().__init__(
            f"Stored metrics version {stored!r} does not match {expected!r}"
        )
