from __future__ import annotations


class ConvergenceError(Exception):
    """Base class for every failure surfaced by Apply / Read / IsCompliant.

    ``phase`` names the step that failed (validation, read, stop, remove,
    install, register, start) and prefixes the message so a retry can be
    aimed at the right cause.
    """

    def __init__(self, message: str, phase: str | None = None):
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"{self.phase}: {self.message}"
        return self.message


class ValidationError(ConvergenceError):
    """Desired configuration is self-contradictory or incomplete."""


class UnsupportedOperationError(ConvergenceError):
    """Removal of an installed agent was requested."""


class InfrastructureError(ConvergenceError):
    """Network, archive, filesystem or service-manager failure."""
