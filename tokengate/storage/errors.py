from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(Exception):
    """Raised when the revocation store cannot complete an operation in time."""

    def __init__(self, operation: str, message: str = "revocation store unavailable"):
        super().__init__(f"{message} ({operation})")
        self.operation = operation
        self.message = message


__all__ = ["ConstraintViolation", "StoreUnavailable"]
