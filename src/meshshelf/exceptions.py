"""
Meshshelf exception hierarchy.

Provides typed exceptions for the import pipeline and the catalog store.

Exception Hierarchy:
    MeshshelfError (base)
    ├── ConfigurationError - Invalid settings
    ├── PathPolicyError - Path outside approved roots or wrong extension
    ├── ScanError - A directory entry could not be enumerated
    ├── ItemProcessingError - One item could not be decoded/analysed
    ├── StoreError - Catalog database failures
    │   ├── StagingWriteError - One item could not be staged
    │   └── OperationFailure - confirm/cancel/bulk update failed as a whole
    └── SessionError - Import session lifecycle violations
        ├── SessionActiveError - A session is already live
        ├── InvalidPhaseError - Operation not allowed in the current phase
        └── ReconciliationError - Conflicting canonical id for a local id
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class MeshshelfError(Exception):
    """Base exception for all meshshelf errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """
        Initialize meshshelf exception.

        Args:
            message: Human-readable error message
            details: Optional structured error details for logging/debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# =============================================================================
# Configuration / Filesystem Errors
# =============================================================================


class ConfigurationError(MeshshelfError):
    """Configuration or settings error."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class PathPolicyError(MeshshelfError):
    """Requested path is not allowed by the path policy."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = str(path)
        super().__init__(message, details=details)
        self.path = path


class ScanError(MeshshelfError):
    """A directory entry could not be enumerated during a scan."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if path:
            details["path"] = str(path)
        super().__init__(message, details=details)
        self.path = path


class ItemProcessingError(MeshshelfError):
    """Decoding or analysis failed for a single item."""

    def __init__(self, name: str, cause: str | BaseException) -> None:
        cause_text = str(cause) or type(cause).__name__
        super().__init__(
            f"Failed to process {name}: {cause_text}",
            details={"name": name, "cause": cause_text},
        )
        self.name = name
        self.cause = cause_text


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(MeshshelfError):
    """Catalog store failure."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details)
        self.operation = operation


class StagingWriteError(StoreError):
    """A single item could not be written to the staging table."""

    def __init__(
        self,
        message: str,
        *,
        relative_path: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("operation", "stage")
        details = kwargs.get("details") or {}
        if relative_path:
            details["relative_path"] = relative_path
        kwargs["details"] = details
        super().__init__(message, **kwargs)
        self.relative_path = relative_path


class OperationFailure(StoreError):
    """A batch operation (confirm, cancel, bulk update) failed as a whole."""

    def __init__(
        self,
        message: str,
        *,
        ids: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.get("details") or {}
        if ids is not None:
            details["id_count"] = len(ids)
        kwargs["details"] = details
        super().__init__(message, **kwargs)
        self.ids = ids or []


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(MeshshelfError):
    """Import session lifecycle error."""

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if phase:
            details["phase"] = phase
        super().__init__(message, details=details)
        self.phase = phase


class SessionActiveError(SessionError):
    """A new scan was requested while another session is live."""

    pass


class InvalidPhaseError(SessionError):
    """Operation is not valid in the current import phase."""

    pass


class ReconciliationError(SessionError):
    """A local identifier was reconciled to two different canonical ids."""

    def __init__(self, local_id: str, existing: str, incoming: str) -> None:
        super().__init__(
            f"Local id {local_id} already maps to {existing}, refusing {incoming}",
            details={"local_id": local_id, "existing": existing, "incoming": incoming},
        )
        self.local_id = local_id
