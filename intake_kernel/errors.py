"""
Layered errors for the Intake Kernel.

Every failure carries the layer it belongs to plus a machine-readable code.
The API turns these into {"error": {"code", "message", "layer", ...}} bodies.
"""

import sqlite3
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorLayer(str, Enum):
    AUTH = "auth"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    SCHEMA = "schema"
    TRANSIENT = "transient"
    SERVER = "server"


class IntakeError(Exception):
    """Base exception for the Intake Kernel."""

    layer: ErrorLayer = ErrorLayer.SERVER
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}

    def to_payload(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message, "layer": self.layer.value}
        body.update(self.context)
        return {"error": body}


class AuthError(IntakeError):
    layer = ErrorLayer.AUTH
    status_code = 401


class AuthorizationError(IntakeError):
    layer = ErrorLayer.AUTHORIZATION
    status_code = 403


class NotFoundError(IntakeError):
    layer = ErrorLayer.AUTHORIZATION
    status_code = 404


class InputValidationError(IntakeError):
    layer = ErrorLayer.VALIDATION
    status_code = 400


class CommitGateError(IntakeError):
    """The commit gate is closed. Carries the unmet reasons."""

    layer = ErrorLayer.VALIDATION
    status_code = 409

    def __init__(self, issues: List[Any]):
        super().__init__(
            "Commit gate is not satisfied.",
            code="COMMIT_GATE_UNMET",
            context={"issues": [i.model_dump(mode="json") for i in issues]},
        )
        self.issues = issues


class ContractValidationError(IntakeError):
    """Generated packet failed validation; nothing was persisted."""

    layer = ErrorLayer.VALIDATION
    status_code = 422

    def __init__(self, issues: List[Any]):
        super().__init__(
            "Generated contract failed validation.",
            code="CONTRACT_VALIDATION_FAILED",
            context={"issues": [i.model_dump(mode="json") for i in issues]},
        )
        self.issues = issues


class TransientError(IntakeError):
    layer = ErrorLayer.TRANSIENT
    status_code = 503


class SchemaError(IntakeError):
    """Missing table/column: a deployment mismatch, never a user mistake."""

    layer = ErrorLayer.SCHEMA
    status_code = 500


_SCHEMA_MARKERS = ("no such table", "no such column", "has no column named")
_TRANSIENT_MARKERS = ("database is locked", "database is busy")


def classify_database_error(exc: sqlite3.Error) -> IntakeError:
    """Map a raw sqlite error onto the error layer it belongs to."""
    text = str(exc).lower()
    if any(marker in text for marker in _SCHEMA_MARKERS):
        return SchemaError(str(exc), code="SCHEMA_MISMATCH")
    if any(marker in text for marker in _TRANSIENT_MARKERS):
        return TransientError(str(exc), code="STORE_BUSY")
    return IntakeError(str(exc), code="STORE_ERROR")
