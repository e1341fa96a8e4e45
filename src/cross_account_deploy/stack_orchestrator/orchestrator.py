"""Deployment workflows composed from the validation, trust and reconcile stages."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from .config import (
    DeployProfile,
    PipelineWorkflowRequest,
    RoleWorkflowRequest,
    build_pipeline_request,
    build_role_request,
)
from .confirm import ConfirmationProvider
from .control_plane import CallerIdentity, ControlPlane, ControlPlaneError
from .errors import AuthenticationError, ConfigurationError, DeploymentError, ErrorKind
from .ids import role_arn_for
from .models import (
    BatchValidationResult,
    DeploymentOutcome,
    FinalStatus,
    StackDescriptor,
    TemplateDescriptor,
    TrustContext,
    Workflow,
    WorkflowReport,
)
from .outputs import OutputExtractor
from .reconciler import StackReconciler
from .security import scrub_text, sensitive_values
from .trust import TrustVerifier
from .validator import TemplateValidator

logger = logging.getLogger(__name__)

ROLE_OUTPUT_KEYS = ("CrossAccountRoleArn",)
PIPELINE_OUTPUT_KEYS = ("PipelineName", "PipelineUrl", "ArtifactsBucketName")


class DeploymentOrchestrator:
    """Runs the deployment workflows and turns every stage failure into a report.

    The orchestrator never exits the process; callers decide what a report's
    ``final_status`` means for them.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        confirmation: ConfirmationProvider,
        profile: DeployProfile | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc),
    ) -> None:
        self.control_plane = control_plane
        self.confirmation = confirmation
        self.profile = profile or DeployProfile()
        self.sleep = sleep
        self.clock = clock
        self.now = now
        self.validator = TemplateValidator(
            control_plane,
            known_regions=self.profile.known_regions,
            max_workers=self.profile.validation_workers,
        )
        self.trust = TrustVerifier(control_plane, clock=wall_clock)
        self.outputs = OutputExtractor(control_plane)

    def validate_templates(self, root: Path | None = None) -> BatchValidationResult:
        target = root if root is not None else Path(self.profile.templates_root)
        logger.info("XAD: validating templates (root=%s)", target)
        return self.validator.validate_directory(target)

    def establish_trust_role(self, request: RoleWorkflowRequest | Mapping[str, Any]) -> WorkflowReport:
        report = WorkflowReport(workflow=Workflow.ESTABLISH_TRUST_ROLE)
        secrets: list[str] = []
        try:
            self._run_role_workflow(request, report, secrets)
        except (ConfigurationError, DeploymentError) as exc:
            self._fail(report, exc, secrets)
        except ControlPlaneError as exc:
            report.fail(ErrorKind.RECONCILIATION, scrub_text(str(exc), secrets) or "")
        self._log_report(report)
        return report

    def deploy_pipeline(self, request: PipelineWorkflowRequest | Mapping[str, Any]) -> WorkflowReport:
        report = WorkflowReport(workflow=Workflow.DEPLOY_PIPELINE)
        secrets: list[str] = []
        try:
            self._run_pipeline_workflow(request, report, secrets)
        except (ConfigurationError, DeploymentError) as exc:
            self._fail(report, exc, secrets)
        except ControlPlaneError as exc:
            report.fail(ErrorKind.RECONCILIATION, scrub_text(str(exc), secrets) or "")
        self._log_report(report)
        return report

    def _run_role_workflow(
        self,
        request: RoleWorkflowRequest | Mapping[str, Any],
        report: WorkflowReport,
        secrets: list[str],
    ) -> None:
        if not isinstance(request, RoleWorkflowRequest):
            request = build_role_request(**self._with_profile_region(request))
        self._check_region(request.region)
        secrets.append(request.external_id)
        report.identifiers.update(
            {"stack_name": request.stack_name, "region": request.region, "role_name": request.role_name}
        )
        identity = self._preflight()
        report.identifiers["target_account_id"] = identity.account_id
        report.identifiers["role_arn"] = role_arn_for(identity.account_id, request.role_name)

        template = self._load_template(request.template_path)
        if not self._validate(template, report):
            return

        descriptor = StackDescriptor(
            name=request.stack_name,
            template=template,
            parameters={
                "SourceAccountId": request.source_account_id,
                "RoleName": request.role_name,
                "ExternalId": request.external_id,
            },
            tags={"Environment": "Production", **request.tags},
            region=request.region,
        )
        outcome = self._reconcile(descriptor, identity, report, secrets)
        if outcome.final_status != FinalStatus.SUCCEEDED:
            return

        outputs = self._extract(descriptor, ROLE_OUTPUT_KEYS, outcome, report)
        if "CrossAccountRoleArn" in outputs:
            report.identifiers["role_arn"] = outputs["CrossAccountRoleArn"]
        else:
            report.warnings.append("could not retrieve CrossAccountRoleArn from stack outputs")

        # The role trusts the source account, so target-account credentials are
        # usually refused here.
        context = TrustContext(
            caller_account_id=identity.account_id,
            target_account_id=identity.account_id,
            role_name=request.role_name,
            external_id=request.external_id,
        )
        try:
            trust = self.trust.verify(context)
        except AuthenticationError as exc:
            logger.warning("XAD: role assumption test skipped (role_arn=%s, error=%s)", context.role_arn, exc)
            report.warnings.append(f"role assumption test skipped; credentials rejected: {exc}")
        else:
            report.trust = trust
            if not trust.assumable:
                report.warnings.append(
                    "role assumption test failed; current credentials may not be permitted to assume the role"
                )
        report.final_status = FinalStatus.SUCCEEDED

    def _run_pipeline_workflow(
        self,
        request: PipelineWorkflowRequest | Mapping[str, Any],
        report: WorkflowReport,
        secrets: list[str],
    ) -> None:
        if not isinstance(request, PipelineWorkflowRequest):
            request = build_pipeline_request(**self._with_profile_region(request))
        self._check_region(request.region)
        secrets.extend([request.external_id, request.github_token])
        report.identifiers.update(
            {
                "stack_name": request.stack_name,
                "region": request.region,
                "target_account_id": request.target_account_id,
                "environment": request.environment.value,
            }
        )
        identity = self._preflight()
        report.identifiers["source_account_id"] = identity.account_id
        role_arn = role_arn_for(request.target_account_id, request.role_name)
        report.identifiers["cross_account_role_arn"] = role_arn

        template = self._load_template(request.template_path)
        if not self._validate(template, report):
            return

        trust = self.trust.verify(
            TrustContext(
                caller_account_id=identity.account_id,
                target_account_id=request.target_account_id,
                role_name=request.role_name,
                external_id=request.external_id,
            )
        )
        report.trust = trust
        if not trust.assumable:
            reason = trust.failure_reason.value if trust.failure_reason else "UNKNOWN"
            report.fail(ErrorKind.TRUST, f"failed to assume cross-account role {role_arn}: {reason}: {trust.detail}")
            return

        descriptor = StackDescriptor(
            name=request.stack_name,
            template=template,
            parameters={
                "GitHubRepoOwner": request.github_owner,
                "GitHubRepoName": request.github_repo,
                "GitHubBranch": request.github_branch,
                "GitHubToken": request.github_token,
                "TargetAccountId": request.target_account_id,
                "CrossAccountRoleName": request.role_name,
                "ExternalId": request.external_id,
                "Environment": request.environment.value,
            },
            tags={"Environment": request.environment.value, **request.tags},
            region=request.region,
        )
        outcome = self._reconcile(descriptor, identity, report, secrets)
        if outcome.final_status != FinalStatus.SUCCEEDED:
            return

        outputs = self._extract(descriptor, PIPELINE_OUTPUT_KEYS, outcome, report)
        for key, identifier in (
            ("PipelineName", "pipeline_name"),
            ("PipelineUrl", "pipeline_url"),
            ("ArtifactsBucketName", "artifacts_bucket"),
        ):
            if key in outputs:
                report.identifiers[identifier] = outputs[key]
            else:
                report.warnings.append(f"stack output {key} not found")

        pipeline_name = outputs.get("PipelineName")
        if pipeline_name:
            report.identifiers["pipeline_status"] = self._pipeline_status(pipeline_name)
            # Existing pipelines run from their own source trigger.
            if outcome.operation == "create":
                self._start_pipeline(pipeline_name, report)
        report.final_status = FinalStatus.SUCCEEDED

    def _with_profile_region(self, request: Mapping[str, Any]) -> dict[str, Any]:
        values = dict(request)
        if values.get("region") is None:
            values["region"] = self.profile.region
        return values

    def _check_region(self, region: str) -> None:
        if region != self.control_plane.region:
            raise ConfigurationError(
                f"request region {region} does not match the control plane region {self.control_plane.region}"
            )

    def _preflight(self) -> CallerIdentity:
        try:
            identity = self.control_plane.get_caller_identity()
        except ControlPlaneError as exc:
            raise AuthenticationError(f"failed to verify credentials: {exc.code}: {exc.message}") from exc
        logger.info("XAD: connected to account (account_id=%s, arn=%s)", identity.account_id, identity.arn)
        return identity

    def _load_template(self, template_path: str) -> TemplateDescriptor:
        path = Path(template_path)
        if not path.is_file():
            raise ConfigurationError(f"template file not found: {path}")
        return TemplateDescriptor.from_path(path)

    def _validate(self, template: TemplateDescriptor, report: WorkflowReport) -> bool:
        validation = self.validator.validate(template)
        report.validation = validation
        report.warnings.extend(
            f"{warning.category.value}: {warning.template}: {warning.detail}" for warning in validation.advisory_warnings
        )
        if not validation.is_valid:
            messages = "; ".join(error.message for error in validation.structural_errors)
            report.fail(ErrorKind.VALIDATION, f"template validation failed: {messages}")
            return False
        return True

    def _reconcile(
        self,
        descriptor: StackDescriptor,
        identity: CallerIdentity,
        report: WorkflowReport,
        secrets: list[str],
    ) -> DeploymentOutcome:
        reconciler = StackReconciler(
            self.control_plane,
            self.confirmation,
            caller_identity=identity.arn,
            project_tag=self.profile.project_tag,
            managed_by_tag=self.profile.managed_by_tag,
            poll=self.profile.poll,
            sleep=self.sleep,
            clock=self.clock,
            now=self.now,
        )
        outcome = reconciler.reconcile(descriptor).scrubbed([*secrets, *sensitive_values(descriptor.parameters)])
        report.outcome = outcome
        if outcome.final_status == FinalStatus.ABORTED:
            report.final_status = FinalStatus.ABORTED
        elif outcome.final_status == FinalStatus.FAILED:
            report.fail(outcome.error_kind or ErrorKind.RECONCILIATION, outcome.error_detail or "stack operation failed")
        return outcome

    def _extract(
        self,
        descriptor: StackDescriptor,
        keys: Iterable[str],
        outcome: DeploymentOutcome,
        report: WorkflowReport,
    ) -> dict[str, str]:
        keys = list(keys)
        try:
            return self.outputs.extract(descriptor, keys)
        except ControlPlaneError as exc:
            logger.warning("XAD: output read failed, using last observed outputs (stack=%s, code=%s)", descriptor.name, exc.code)
            report.warnings.append(f"could not read stack outputs: {exc.code}")
            return {key: outcome.outputs[key] for key in keys if key in outcome.outputs}

    def _pipeline_status(self, pipeline_name: str) -> str:
        try:
            status = self.control_plane.get_pipeline_state(pipeline_name)
        except (ControlPlaneError, AuthenticationError) as exc:
            logger.info("XAD: pipeline status unavailable (pipeline=%s, error=%s)", pipeline_name, exc)
            return "Unknown"
        return status or "Unknown"

    def _start_pipeline(self, pipeline_name: str, report: WorkflowReport) -> None:
        try:
            execution_id = self.control_plane.start_pipeline_execution(pipeline_name)
        except (ControlPlaneError, AuthenticationError) as exc:
            logger.warning("XAD: initial pipeline execution not started (pipeline=%s, error=%s)", pipeline_name, exc)
            report.warnings.append(
                "could not trigger initial pipeline execution; this is normal if the repository has no content yet"
            )
            return
        report.identifiers["pipeline_execution_id"] = execution_id
        logger.info("XAD: initial pipeline execution triggered (pipeline=%s, execution=%s)", pipeline_name, execution_id)

    def _fail(self, report: WorkflowReport, exc: Exception, secrets: list[str]) -> None:
        kind = getattr(exc, "kind", ErrorKind.RECONCILIATION)
        report.fail(kind, scrub_text(str(exc), secrets) or type(exc).__name__)

    def _log_report(self, report: WorkflowReport) -> None:
        if report.final_status == FinalStatus.FAILED:
            logger.error(
                "XAD: workflow failed (workflow=%s, kind=%s, detail=%s)",
                report.workflow.value,
                report.error_kind.value if report.error_kind else None,
                report.error_detail,
            )
        else:
            logger.info(
                "XAD: workflow finished (workflow=%s, status=%s, warnings=%d)",
                report.workflow.value,
                report.final_status.value,
                len(report.warnings),
            )
