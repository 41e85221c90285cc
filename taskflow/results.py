from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class MutationResult:
    """Outcome of a user action: the new value on success, a message on failure."""
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "MutationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "MutationResult":
        return cls(ok=False, error=error)

    def __bool__(self) -> bool:
        return self.ok
