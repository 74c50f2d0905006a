from __future__ import annotations

from enum import Enum
from typing import Optional


class RejectionReason(str, Enum):
    MULTIPLE_STATEMENTS = "MultipleStatements"
    FORBIDDEN_KEYWORD = "ForbiddenKeyword"
    SYSTEM_SCHEMA_ACCESS = "SystemSchemaAccess"
    NOT_A_SELECT = "NotASelect"
    TABLE_NOT_ALLOWED = "TableNotAllowed"
    UNPARSEABLE = "Unparseable"
    INVALID_RESPONSE = "InvalidResponse"


class AnalystError(Exception):
    """Base class for every expected failure of the AI query pipeline."""


class EmptyQueryError(AnalystError):
    def __init__(self) -> None:
        super().__init__("Query is required")


class SQLRejected(AnalystError):
    """Candidate SQL failed hardening or the generator's own post-checks."""

    def __init__(self, reason: RejectionReason, message: str, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.table = table


class UpstreamGenerationError(AnalystError):
    """The text generation service errored, timed out or returned garbage."""


class ExecutionError(AnalystError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotReadOnlyError(ExecutionError):
    def __init__(self) -> None:
        super().__init__("Only SELECT statements are allowed")


class ExecutionTimeoutError(ExecutionError):
    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Query timed out after {timeout_ms} ms")
        self.timeout_ms = timeout_ms


class ExecutionFailedError(ExecutionError):
    pass


class LocationAccessError(AnalystError):
    def __init__(self) -> None:
        super().__init__("No access to the requested locations")
