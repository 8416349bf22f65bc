from dataclasses import dataclass
from typing import Any, Optional

NOT_FOUND = "not_found"
CONFLICT = "conflict"
UNAVAILABLE = "unavailable"
INVALID = "invalid"
RATE_LIMITED = "rate_limited"
FAILED = "failed"


@dataclass
class Outcome:
    """Result of a business operation. A failed outcome is an expected answer, not an error."""

    success: bool
    message: str = ""
    data: Any = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, message: str = "", data: Any = None) -> "Outcome":
        return cls(True, message, data)

    @classmethod
    def fail(cls, message: str, reason: str = INVALID, data: Any = None) -> "Outcome":
        return cls(False, message, data, reason)

    def __bool__(self) -> bool:
        return self.success
