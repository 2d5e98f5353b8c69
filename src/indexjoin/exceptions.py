"""Exception types raised by the indexjoin engine."""
from typing import Any, Dict, List, Optional


class IndexJoinError(Exception):
    """Base exception for all indexjoin errors."""

    error_code: str = "JOIN000"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)


class ConfigurationError(IndexJoinError):
    """Raised when a join configuration is structurally invalid.

    Carries every problem found as a list of discrete messages. Always raised
    before any record is fetched.
    """

    error_code = "CFG001"

    def __init__(self, errors: List[str], message: Optional[str] = None):
        self.errors = list(errors)
        summary = message or f"Invalid join configuration: {len(self.errors)} error(s)"
        super().__init__(summary, details={"errors": "; ".join(self.errors)})


class CyclicJoinError(ConfigurationError):
    """Raised when the join graph contains a cycle."""

    error_code = "CFG002"

    def __init__(self, cycle: List[str], errors: List[str]):
        self.cycle = list(cycle)
        super().__init__(errors, message=f"Join graph contains a cycle: {' -> '.join(self.cycle)}")


class SearchBackendError(IndexJoinError):
    """Raised by a search backend when a request cannot be served."""

    error_code = "SRCH001"

    def __init__(self, message: str, index: Optional[str] = None,
                 status_code: Optional[int] = None):
        details: Dict[str, Any] = {}
        if index:
            details["index"] = index
        if status_code is not None:
            details["status_code"] = status_code
        self.index = index
        self.status_code = status_code
        super().__init__(message, details)


class IndexAccessDeniedError(SearchBackendError):
    """Raised when an index is outside the configured allow-list."""

    error_code = "SRCH403"


class FetchError(IndexJoinError):
    """Raised when records for one join source cannot be obtained.

    Identifies the failing source and stage so the caller can correct the
    configuration instead of retrying blindly.
    """

    error_code = "FET001"

    def __init__(self, message: str, source_id: str, stage: Optional[int] = None,
                 cause: Optional[BaseException] = None):
        details: Dict[str, Any] = {"source_id": source_id}
        if stage is not None:
            details["stage"] = stage
        self.source_id = source_id
        self.stage = stage
        self.cause = cause
        super().__init__(message, details)

    @property
    def access_denied(self) -> bool:
        return isinstance(self.cause, IndexAccessDeniedError)


class SourceResolutionError(FetchError):
    """Raised when a join source cannot be resolved to an index and query."""

    error_code = "FET002"
