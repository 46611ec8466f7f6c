"""meshshelf - Staged import of 3D model files into a local catalog."""

from meshshelf.exceptions import (
    ConfigurationError,
    InvalidPhaseError,
    ItemProcessingError,
    MeshshelfError,
    OperationFailure,
    PathPolicyError,
    ReconciliationError,
    ScanError,
    SessionActiveError,
    SessionError,
    StagingWriteError,
    StoreError,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Base exception
    "MeshshelfError",
    # Configuration / filesystem
    "ConfigurationError",
    "PathPolicyError",
    "ScanError",
    # Per-item
    "ItemProcessingError",
    # Store
    "StoreError",
    "StagingWriteError",
    "OperationFailure",
    # Session
    "SessionError",
    "SessionActiveError",
    "InvalidPhaseError",
    "ReconciliationError",
]
