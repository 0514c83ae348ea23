"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the exception hierarchy shared by the credit risk and
settlement subsystems.

- Every error carries an error kind for the API layer
- Every error carries context so a caller can show which
  limit, entity or state was involved
- Collaborator failures keep their original cause

============================================================
EXCEPTION HIERARCHY
============================================================
EngineError (base)
├── ConfigurationError
├── ValidationError
├── NotFoundError
│   ├── ClientNotFoundError
│   ├── SettlementNotFoundError
│   └── ReconciliationItemNotFoundError
├── InvalidStateTransitionError
└── CollaboratorError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact settlement."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class EngineError(Exception):
    """
    Base exception for all engine errors.

    All exceptions carry:
    - error_kind: stable machine-readable category
    - severity: for alerting
    - context: for debugging and UI rendering
    - timestamp: when the error occurred
    """

    error_kind: str = "engine_error"
    default_severity: Severity = Severity.MEDIUM

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/API responses."""
        return {
            "error_kind": self.error_kind,
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "context": {k: _stringify(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        base = f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
        return f"{base} | {ctx_str}" if ctx_str else base


def _stringify(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(EngineError):
    """Error in configuration."""

    error_kind = "configuration_error"
    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


# ============================================================
# VALIDATION ERRORS
# ============================================================

class ValidationError(EngineError):
    """
    Caller supplied invalid input.

    Raised before any state is mutated; never produces an alert.
    """

    error_kind = "validation_error"
    default_severity = Severity.LOW

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]

        super().__init__(message, context=context, **kwargs)
        self.field = field


# ============================================================
# LOOKUP ERRORS
# ============================================================

class NotFoundError(EngineError):
    """A required entity does not exist."""

    error_kind = "not_found"
    default_severity = Severity.LOW
    entity: str = "entity"

    def __init__(self, entity_id: str, **kwargs):
        context = kwargs.pop("context", {})
        context[f"{self.entity}_id"] = entity_id
        super().__init__(f"Unknown {self.entity}: {entity_id}", context=context, **kwargs)
        self.entity_id = entity_id


class ClientNotFoundError(NotFoundError):
    """No credit profile exists for the client."""

    entity = "client"


class SettlementNotFoundError(NotFoundError):
    """No settlement exists with the given id."""

    entity = "settlement"


class AlertNotFoundError(NotFoundError):
    """No risk alert exists with the given id."""

    entity = "alert"


class ReconciliationItemNotFoundError(NotFoundError):
    """No reconciliation item exists with the given id."""

    entity = "reconciliation_item"


# ============================================================
# STATE MACHINE ERRORS
# ============================================================

class InvalidStateTransitionError(EngineError):
    """A requested status change is not allowed from the current status."""

    error_kind = "invalid_state_transition"
    default_severity = Severity.MEDIUM

    def __init__(
        self,
        entity_id: str,
        from_state: str,
        to_state: str,
        reason: str = "",
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context.update({
            "entity_id": entity_id,
            "from_state": from_state,
            "to_state": to_state,
        })
        message = f"Cannot transition {entity_id} from {from_state} to {to_state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, context=context, **kwargs)
        self.from_state = from_state
        self.to_state = to_state


# ============================================================
# COLLABORATOR ERRORS
# ============================================================

class CollaboratorError(EngineError):
    """
    An external collaborator (asset mover, confirmation source,
    movement query) was unreachable or returned an error.
    """

    error_kind = "collaborator_error"
    default_severity = Severity.HIGH

    def __init__(
        self,
        message: str,
        collaborator: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if collaborator:
            context["collaborator"] = collaborator
        if operation:
            context["operation"] = operation

        super().__init__(message, context=context, **kwargs)
