"""Structured errors raised by the blending and stock services."""

from __future__ import annotations

from typing import Dict, Optional


class BlendingError(Exception):
    """Base error with a machine readable ``kind`` and an HTTP status."""

    status_code = 400

    def __init__(self, message: str, *, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"kind": self.kind, "message": self.message}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class BlendingValidationError(BlendingError):
    """Raised when the payload provided by the client is invalid."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("Validation error", errors=errors)


class DuplicateFibreError(BlendingError):
    status_code = 409


class CompositionOverflowError(BlendingError):
    pass


class CompositionMismatchError(BlendingError):
    pass


class MissingRealisationError(BlendingError):
    pass


class InvalidStatusTransitionError(BlendingError):
    status_code = 409


class BlendInUseError(BlendingError):
    status_code = 409


class FibreNotFoundError(BlendingError):
    status_code = 404


class BlendNotFoundError(BlendingError):
    status_code = 404


class OrderNotFoundError(BlendingError):
    status_code = 404


class BuyerNotFoundError(BlendingError):
    status_code = 404


class FibreInUseError(BlendingError):
    status_code = 409


class FibreCategoryNotFoundError(BlendingError):
    status_code = 404


class ProductionLogNotFoundError(BlendingError):
    status_code = 404
