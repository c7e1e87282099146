from __future__ import annotations

from typing import Any, Optional


class CardRankError(Exception):
    """Base class for every error raised by the reordering core."""

    code = "INTERNAL_SERVER_ERROR"

    def details(self) -> dict[str, Any]:
        return {}


class NotFound(CardRankError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"Entity '{entity}' with key '{key}' was not found.")
        self.entity = entity
        self.key = key

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "key": str(self.key)}


class DomainViolation(CardRankError):
    code = "BAD_REQUEST"


class PreconditionRequired(CardRankError):
    code = "PRECONDITION_REQUIRED"


class ValidationFailed(CardRankError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def details(self) -> dict[str, Any]:
        return {"field": self.field}


class Conflict(CardRankError):
    code = "CONFLICT"


class RebalanceFailed(CardRankError):
    """Renumbering gave up; the move that triggered it is already committed."""

    code = "REBALANCE_FAILED"

    def __init__(self, column_id: str, max_attempts: int) -> None:
        super().__init__(f"Rank rebalance failed after {max_attempts} attempts; please retry.")
        self.column_id = column_id
        self.max_attempts = max_attempts
        # Set by the move orchestrator to the committed card.
        self.card = None

    def details(self) -> dict[str, Any]:
        out: dict[str, Any] = {"columnId": self.column_id, "maxAttempts": self.max_attempts}
        if self.card is not None:
            out["card"] = self.card.to_payload()
        return out


class RequestCancelled(CardRankError):
    code = "DEADLINE_EXCEEDED"

    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__(reason or "The request was cancelled.")


class ConfigError(Exception):
    """Raised at startup when settings are invalid."""
