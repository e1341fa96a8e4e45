"""Cross-account stack orchestration: validate, verify trust, reconcile, report."""

from .confirm import AlwaysConfirm, ConfirmationProvider, InteractiveConfirm, NeverConfirm
from .control_plane import AwsControlPlane, ControlPlane, RemoteRejected, RemoteUnavailable, build_control_plane
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DeploymentError,
    ErrorKind,
    ReconciliationError,
    TemplateValidationError,
    TrustError,
)
from .models import DeploymentOutcome, FinalStatus, StackDescriptor, TemplateDescriptor, WorkflowReport
from .orchestrator import DeploymentOrchestrator
from .outputs import OutputExtractor
from .reconciler import StackReconciler
from .trust import TrustVerifier
from .validator import TemplateValidator

__all__ = [
    "AlwaysConfirm",
    "AuthenticationError",
    "AwsControlPlane",
    "ConfigurationError",
    "ConfirmationProvider",
    "ControlPlane",
    "DeploymentError",
    "DeploymentOrchestrator",
    "DeploymentOutcome",
    "ErrorKind",
    "FinalStatus",
    "InteractiveConfirm",
    "NeverConfirm",
    "OutputExtractor",
    "ReconciliationError",
    "RemoteRejected",
    "RemoteUnavailable",
    "StackDescriptor",
    "StackReconciler",
    "TemplateDescriptor",
    "TemplateValidationError",
    "TemplateValidator",
    "TrustError",
    "TrustVerifier",
    "WorkflowReport",
    "build_control_plane",
]
