"""Error taxonomy shared by the gateway, ledger and orchestrator."""
from __future__ import annotations


class RadarError(Exception):
    """Base class for all HackRadar errors."""


class ValidationError(RadarError):
    """Caller input was rejected before any write. Never retried."""

    def __init__(self, reasons: list[str] | str):
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "invalid input")


class ConflictError(ValidationError):
    """A project with the same team name or email already exists."""


class NotFoundError(RadarError):
    """Unknown project or timeline entry."""

    def __init__(self, label: str, entity_id: int | str):
        self.label = label
        self.entity_id = entity_id
        super().__init__(f"{label} {entity_id} not found")


class EngineError(RadarError):
    """Scoring engine failed, timed out, or returned unusable output."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class PersistenceError(RadarError):
    """The durable store rejected or could not complete a write."""
