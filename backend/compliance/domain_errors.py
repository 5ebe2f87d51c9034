"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class NotFoundError(DomainError):
    """Referenced requirement or reminder job does not exist."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=404, message=message, details=details)


class AlreadyExistsError(DomainError):
    """An open reminder job already exists for the requirement."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=409, message=message, details=details)


class InvalidTransitionError(DomainError):
    """State-machine operation requested from an incompatible state."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code=code, http_status=409, message=message, details=details)


class NotifierFailure(RuntimeError):
    """External send failed; the attempt is recorded and retried by the next sweep."""


class InfrastructureFailure(RuntimeError):
    """Store is unreachable; fatal to the current sweep."""
