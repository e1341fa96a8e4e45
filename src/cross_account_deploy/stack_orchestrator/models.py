"""Immutable records exchanged between the deployment stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from .errors import ErrorKind
from .ids import role_arn_for
from .security import scrub_text


class WarningCategory(str, Enum):
    HARDCODED_ACCOUNT_ID = "hardcoded-account-id"
    HARDCODED_REGION = "hardcoded-region"
    MISSING_DESCRIPTION = "missing-description"
    MISSING_INTERFACE_METADATA = "missing-interface-metadata"


class TrustFailureReason(str, Enum):
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    TRUST_POLICY_REJECTED = "TRUST_POLICY_REJECTED"
    EXTERNAL_ID_MISMATCH = "EXTERNAL_ID_MISMATCH"
    CALLER_NOT_PERMITTED = "CALLER_NOT_PERMITTED"
    NETWORK = "NETWORK"


class StackExistence(str, Enum):
    ABSENT = "ABSENT"
    PRESENT = "PRESENT"


class FinalStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ABORTED = "Aborted"


class ReconcileState(str, Enum):
    CHECKING_EXISTENCE = "CHECKING_EXISTENCE"
    CONFIRMING_UPDATE = "CONFIRMING_UPDATE"
    APPLYING = "APPLYING"
    WAITING = "WAITING"
    EXTRACTING_OUTPUTS = "EXTRACTING_OUTPUTS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"


class Workflow(str, Enum):
    VALIDATE_TEMPLATES = "validate-templates"
    ESTABLISH_TRUST_ROLE = "establish-trust-role"
    DEPLOY_PIPELINE = "deploy-pipeline"


@dataclass(frozen=True)
class TemplateDescriptor:
    location: str
    body: str

    @property
    def name(self) -> str:
        return Path(self.location).name

    @classmethod
    def from_path(cls, path: Path) -> "TemplateDescriptor":
        return cls(location=str(path), body=path.read_text(encoding="utf-8"))


@dataclass(frozen=True)
class StructuralError:
    location: str
    message: str
    line: int | None = None


@dataclass(frozen=True)
class AdvisoryWarning:
    category: WarningCategory
    template: str
    detail: str
    line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "template": self.template,
            "detail": self.detail,
            "line": self.line,
        }


@dataclass(frozen=True)
class ValidationResult:
    template: str
    is_valid: bool
    structural_errors: tuple[StructuralError, ...] = ()
    advisory_warnings: tuple[AdvisoryWarning, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict)

    def warnings_of(self, category: WarningCategory) -> list[AdvisoryWarning]:
        return [item for item in self.advisory_warnings if item.category == category]

    def to_dict(self) -> dict[str, Any]:
        return {
            "template": self.template,
            "is_valid": self.is_valid,
            "structural_errors": [
                {"location": item.location, "message": item.message, "line": item.line}
                for item in self.structural_errors
            ],
            "advisory_warnings": [item.to_dict() for item in self.advisory_warnings],
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class BatchValidationResult:
    results: tuple[ValidationResult, ...]

    @property
    def valid_count(self) -> int:
        return sum(1 for item in self.results if item.is_valid)

    @property
    def invalid_count(self) -> int:
        return sum(1 for item in self.results if not item.is_valid)

    @property
    def exit_code(self) -> int:
        return 1 if self.invalid_count > 0 else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid_count": self.valid_count,
            "invalid_count": self.invalid_count,
            "total": len(self.results),
            "results": [item.to_dict() for item in self.results],
        }


@dataclass(frozen=True)
class TrustContext:
    caller_account_id: str
    target_account_id: str
    role_name: str
    external_id: str = field(repr=False)

    @property
    def role_arn(self) -> str:
        return role_arn_for(self.target_account_id, self.role_name)


@dataclass(frozen=True)
class TrustVerificationResult:
    assumable: bool
    role_arn: str
    failure_reason: TrustFailureReason | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "assumable": self.assumable,
            "role_arn": self.role_arn,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class StackDescriptor:
    name: str
    template: TemplateDescriptor
    parameters: Mapping[str, str]
    tags: Mapping[str, str]
    region: str
    capabilities: tuple[str, ...] = ("CAPABILITY_NAMED_IAM",)


@dataclass(frozen=True)
class StackState:
    name: str
    stack_id: str
    status: str
    status_reason: str | None = None
    parameters: Mapping[str, str] = field(default_factory=dict)
    tags: Mapping[str, str] = field(default_factory=dict)
    outputs: Mapping[str, str] = field(default_factory=dict)
    last_updated: datetime | None = None


@dataclass(frozen=True)
class FailedResource:
    logical_id: str
    resource_type: str
    status: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {
            "logical_id": self.logical_id,
            "resource_type": self.resource_type,
            "status": self.status,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class DeploymentOutcome:
    final_status: FinalStatus
    outputs: Mapping[str, str] = field(default_factory=dict)
    error_kind: ErrorKind | None = None
    error_detail: str | None = None
    operation: str = "none"
    changed: bool = False
    stack_status: str | None = None
    transitions: tuple[ReconcileState, ...] = ()
    failed_resources: tuple[FailedResource, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.final_status == FinalStatus.SUCCEEDED

    def scrubbed(self, secrets: Iterable[str | None]) -> "DeploymentOutcome":
        """Copy with secret literals removed from every remote message."""
        secrets = list(secrets)
        return replace(
            self,
            error_detail=scrub_text(self.error_detail, secrets),
            failed_resources=tuple(
                replace(item, reason=scrub_text(item.reason, secrets) or "") for item in self.failed_resources
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_status": self.final_status.value,
            "outputs": dict(self.outputs),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_detail": self.error_detail,
            "operation": self.operation,
            "changed": self.changed,
            "stack_status": self.stack_status,
            "transitions": [state.value for state in self.transitions],
            "failed_resources": [item.to_dict() for item in self.failed_resources],
        }


@dataclass
class WorkflowReport:
    workflow: Workflow
    final_status: FinalStatus = FinalStatus.FAILED
    identifiers: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None
    error_detail: str | None = None
    validation: ValidationResult | None = None
    trust: TrustVerificationResult | None = None
    outcome: DeploymentOutcome | None = None

    def fail(self, kind: ErrorKind, detail: str) -> "WorkflowReport":
        self.final_status = FinalStatus.FAILED
        self.error_kind = kind
        self.error_detail = detail
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow": self.workflow.value,
            "final_status": self.final_status.value,
            "identifiers": dict(self.identifiers),
            "warnings": list(self.warnings),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_detail": self.error_detail,
            "validation": self.validation.to_dict() if self.validation else None,
            "trust": self.trust.to_dict() if self.trust else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
        }
