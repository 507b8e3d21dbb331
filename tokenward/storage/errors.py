from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Raised when the backing store cannot complete a statement.

    Wraps driver and connectivity faults so callers can tell infrastructure
    failures apart from business-rule errors.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StoreError):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""


__all__ = ["ConstraintViolation", "StoreError"]
