"""Error taxonomy for the deployment workflows."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFIGURATION = "CONFIGURATION"
    AUTHENTICATION = "AUTHENTICATION"
    VALIDATION = "VALIDATION"
    TRUST = "TRUST"
    RECONCILIATION = "RECONCILIATION"
    TIMEOUT = "TIMEOUT"


class ConfigurationError(ValueError):
    """Raised when identifiers or enumerated values are malformed."""

    kind = ErrorKind.CONFIGURATION


class DeploymentError(RuntimeError):
    """Base class for failures raised by a workflow stage."""

    kind = ErrorKind.RECONCILIATION


class AuthenticationError(DeploymentError):
    """Raised when the resolved identity cannot reach the control plane."""

    kind = ErrorKind.AUTHENTICATION


class TemplateValidationError(DeploymentError):
    """Raised when a template is structurally invalid."""

    kind = ErrorKind.VALIDATION


class TrustError(DeploymentError):
    """Raised when a cross-account role cannot be assumed."""

    kind = ErrorKind.TRUST


class ReconciliationError(DeploymentError):
    """Raised when a stack operation is rejected or ends in a failed state."""

    kind = ErrorKind.RECONCILIATION
