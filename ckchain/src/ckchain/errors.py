"""
Errors raised by the ckchain backends and the index layer.
"""

from __future__ import annotations

from typing import Any


class BackendError(Exception):
    """Base error raised by blockchain backends."""

    pass


class ConfigurationError(BackendError):
    """Missing or unknown backend/store configuration."""

    pass


class UnsupportedOperationError(BackendError):
    """The operation is not meaningful for the selected backend."""

    def __init__(self, backend: str, operation: str):
        self.backend = backend
        self.operation = operation
        super().__init__(f"{operation} is not supported by the {backend} backend")


class UnknownTransactionTypeError(BackendError):
    """A transaction carries a type code we do not decode."""

    def __init__(self, code: Any):
        self.code = code
        super().__init__(f"Unknown transaction type {code}")
