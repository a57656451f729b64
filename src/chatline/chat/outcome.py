"""Operation outcomes and the error taxonomy.

Learn: Protocol handlers don't raise to signal "you can't do that".
They return an Outcome — either a success carrying a payload, or a
failure carrying one ErrorKind and a human-readable message. The error
isolation layer then only has to map failures to an OperationError
event; exceptions are reserved for genuinely unexpected faults.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"  # no resolvable identity
    INVALID = "invalid"                  # malformed input
    NOT_FOUND = "not_found"              # referenced message doesn't exist
    FORBIDDEN = "forbidden"              # caller isn't the message's sender
    DELIVERY_FAILED = "delivery_failed"  # store error while persisting
    TRANSPORT_FAILURE = "transport_failure"  # recipient unreachable; dispatcher logs it, never surfaced
    INTERNAL = "internal"                # unexpected fault caught at the boundary


@dataclass(frozen=True)
class Outcome:
    """Result of one protocol operation."""

    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""
    delivered: dict[str, int] = field(default_factory=dict)  # event → connections reached

    @classmethod
    def success(cls, value: Any = None, **delivered: int) -> "Outcome":
        return cls(ok=True, value=value, delivered=delivered)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Outcome":
        return cls(ok=False, error=error, message=message)

    def __bool__(self) -> bool:
        return self.ok
