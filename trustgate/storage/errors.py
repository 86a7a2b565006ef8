from __future__ import annotations

from typing import Any, Dict, Optional


class BackendUnavailable(Exception):
    """Raised when the key-value backend cannot be reached or rejects a command."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.detail = detail or {}


__all__ = ["BackendUnavailable"]
