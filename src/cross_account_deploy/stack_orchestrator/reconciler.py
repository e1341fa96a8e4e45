"""Stack reconciliation: create-or-update a named stack and wait for a terminal status."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from .config import PollSettings
from .confirm import ConfirmationProvider
from .control_plane import ControlPlane, ControlPlaneError, RemoteUnavailable
from .errors import ErrorKind, ReconciliationError
from .ids import client_request_token
from .models import (
    DeploymentOutcome,
    FailedResource,
    FinalStatus,
    ReconcileState,
    StackDescriptor,
    StackExistence,
    StackState,
)
from .retry import backoff_delay, with_retry
from .security import redact_parameters, scrub_text, sensitive_values

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"})
FAILED_STATUSES = frozenset(
    {
        "CREATE_FAILED",
        "DELETE_COMPLETE",
        "DELETE_FAILED",
        "IMPORT_ROLLBACK_COMPLETE",
        "IMPORT_ROLLBACK_FAILED",
        "ROLLBACK_COMPLETE",
        "ROLLBACK_FAILED",
        "UPDATE_FAILED",
        "UPDATE_ROLLBACK_COMPLETE",
        "UPDATE_ROLLBACK_FAILED",
    }
)
VOLATILE_TAG_KEYS = frozenset({"DeployedBy", "DeploymentDate"})
_MASKED_PARAMETER_VALUE = "****"


def is_terminal(status: str) -> bool:
    return status in SUCCESS_STATUSES or status in FAILED_STATUSES


@dataclass(frozen=True)
class _PollResult:
    state: StackState | None
    timed_out: bool = False


class StackReconciler:
    def __init__(
        self,
        control_plane: ControlPlane,
        confirmation: ConfirmationProvider,
        *,
        caller_identity: str,
        project_tag: str = "CrossAccountInfraDeployment",
        managed_by_tag: str = "cross-account-deploy",
        poll: PollSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(tz=timezone.utc),
    ) -> None:
        self.control_plane = control_plane
        self.confirmation = confirmation
        self.caller_identity = caller_identity
        self.project_tag = project_tag
        self.managed_by_tag = managed_by_tag
        self.poll = poll or PollSettings()
        self.sleep = sleep
        self.clock = clock
        self.now = now

    def desired_tags(self, descriptor: StackDescriptor, submitted_at: datetime) -> dict[str, str]:
        """Fixed identifying tags first, caller-supplied tags applied last (caller wins)."""
        tags = {
            "Project": self.project_tag,
            "ManagedBy": self.managed_by_tag,
            "DeployedBy": self.caller_identity,
            "DeploymentDate": submitted_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        tags.update(descriptor.tags)
        return tags

    def existence(self, name: str) -> StackExistence:
        return StackExistence.PRESENT if self._describe(name) is not None else StackExistence.ABSENT

    def reconcile(self, descriptor: StackDescriptor) -> DeploymentOutcome:
        """Drive the stack to the descriptor's state; secret parameter values never appear in the outcome."""
        secrets = sensitive_values(descriptor.parameters)
        return self._reconcile(descriptor, secrets).scrubbed(secrets)

    def _reconcile(self, descriptor: StackDescriptor, secrets: list[str]) -> DeploymentOutcome:
        transitions: list[ReconcileState] = [ReconcileState.CHECKING_EXISTENCE]
        name = descriptor.name
        logger.info("XAD: checking stack existence (stack=%s, region=%s)", name, descriptor.region)
        try:
            current = self._describe(name)
        except ControlPlaneError as exc:
            return self._failed(transitions, f"{exc.code}: {exc.message}")

        if current is None:
            operation = "create"
        else:
            transitions.append(ReconcileState.CONFIRMING_UPDATE)
            logger.warning("XAD: stack already exists (stack=%s, status=%s)", name, current.status)
            prompt = f"Stack {name} already exists. This will update the existing stack."
            if not self.confirmation.confirm(prompt):
                logger.info("XAD: deployment cancelled by user (stack=%s)", name)
                transitions.append(ReconcileState.ABORTED)
                return DeploymentOutcome(
                    final_status=FinalStatus.ABORTED,
                    stack_status=current.status,
                    transitions=tuple(transitions),
                )
            operation = "update"

        transitions.append(ReconcileState.APPLYING)
        submitted_at = self.now()
        tags = self.desired_tags(descriptor, submitted_at)
        if current is not None and self._matches_desired(current, descriptor, tags):
            logger.info("XAD: stack already matches desired state (stack=%s)", name)
            transitions.extend([ReconcileState.EXTRACTING_OUTPUTS, ReconcileState.SUCCEEDED])
            return DeploymentOutcome(
                final_status=FinalStatus.SUCCEEDED,
                outputs=dict(current.outputs),
                operation="none",
                changed=False,
                stack_status=current.status,
                transitions=tuple(transitions),
            )

        token = client_request_token(
            name,
            descriptor.template.body,
            descriptor.parameters,
            submitted_at.isoformat(),
        )
        logger.info(
            "XAD: submitting %s (stack=%s, parameters=%s, tags=%s)",
            operation,
            name,
            redact_parameters(descriptor.parameters),
            tags,
        )
        try:
            if operation == "create":
                self.control_plane.create_stack(
                    name,
                    descriptor.template.body,
                    descriptor.parameters,
                    tags,
                    descriptor.capabilities,
                    token,
                )
            else:
                stack_id = self.control_plane.update_stack(
                    name,
                    descriptor.template.body,
                    descriptor.parameters,
                    tags,
                    descriptor.capabilities,
                    token,
                )
                if stack_id is None:
                    return self._no_op(transitions, current)
        except ControlPlaneError as exc:
            logger.error(
                "XAD: %s rejected (stack=%s, code=%s, message=%s)",
                operation,
                name,
                exc.code,
                scrub_text(exc.message, secrets),
            )
            return self._failed(transitions, exc.message or exc.code, operation=operation)

        transitions.append(ReconcileState.WAITING)
        try:
            result = self._wait(name, baseline_status=current.status if current else None)
        except ControlPlaneError as exc:
            return self._failed(transitions, f"{exc.code}: {exc.message}", operation=operation, changed=True)

        if result.timed_out:
            status = result.state.status if result.state else None
            logger.error("XAD: timed out waiting for stack (stack=%s, last_status=%s)", name, status)
            return self._failed(
                transitions,
                f"Timeout: stack {name} did not reach a terminal status within {self.poll.timeout_seconds}s",
                operation=operation,
                kind=ErrorKind.TIMEOUT,
                stack_status=status,
                changed=True,
            )
        final = result.state
        if final is None:
            return self._failed(transitions, f"stack {name} no longer exists", operation=operation, changed=True)
        if final.status in SUCCESS_STATUSES:
            transitions.extend([ReconcileState.EXTRACTING_OUTPUTS, ReconcileState.SUCCEEDED])
            logger.info("XAD: stack operation complete (stack=%s, status=%s)", name, final.status)
            return DeploymentOutcome(
                final_status=FinalStatus.SUCCEEDED,
                outputs=dict(final.outputs),
                operation=operation,
                changed=True,
                stack_status=final.status,
                transitions=tuple(transitions),
            )

        detail = final.status_reason or final.status
        failed_resources = self._failed_resources(name)
        logger.error(
            "XAD: stack operation failed (stack=%s, status=%s, reason=%s, failed_resources=%d)",
            name,
            final.status,
            scrub_text(detail, secrets),
            len(failed_resources),
        )
        return self._failed(
            transitions,
            detail,
            operation=operation,
            stack_status=final.status,
            failed_resources=failed_resources,
            changed=True,
        )

    def reconcile_or_raise(self, descriptor: StackDescriptor) -> DeploymentOutcome:
        outcome = self.reconcile(descriptor)
        if outcome.final_status == FinalStatus.FAILED:
            raise ReconciliationError(outcome.error_detail or "stack reconciliation failed")
        return outcome

    def _describe(self, name: str) -> StackState | None:
        def _on_retry(attempt: int, delay: float, exc: Exception) -> None:
            logger.warning("XAD: describe retry (stack=%s, attempt=%d, delay=%.1fs, error=%s)", name, attempt, delay, exc)

        return with_retry(
            lambda: self.control_plane.describe_stack(name),
            attempts=self.poll.describe_attempts,
            base_delay_seconds=self.poll.initial_delay_seconds,
            max_delay_seconds=self.poll.max_delay_seconds,
            retry_on=lambda exc: isinstance(exc, RemoteUnavailable),
            on_retry=_on_retry,
            sleep=self.sleep,
        )

    def _wait(self, name: str, *, baseline_status: str | None) -> _PollResult:
        deadline = None
        if self.poll.timeout_seconds is not None:
            deadline = self.clock() + self.poll.timeout_seconds
        seen_in_progress = False
        attempt = 0
        state: StackState | None = None
        while True:
            attempt += 1
            state = self._describe(name)
            settling = attempt <= self.poll.stale_status_polls
            if state is None:
                if not settling:
                    return _PollResult(state=None)
            elif state.status.endswith("_IN_PROGRESS"):
                seen_in_progress = True
                logger.info("XAD: waiting for stack (stack=%s, status=%s)", name, state.status)
            elif is_terminal(state.status):
                # Reads right after a submit can still return the pre-submit status.
                stale = not seen_in_progress and state.status == baseline_status and settling
                if not stale:
                    return _PollResult(state=state)
            else:
                logger.warning("XAD: unknown stack status (stack=%s, status=%s)", name, state.status)

            now = self.clock()
            if deadline is not None and now >= deadline:
                return _PollResult(state=state, timed_out=True)
            delay = backoff_delay(
                attempt,
                base_delay_seconds=self.poll.initial_delay_seconds,
                max_delay_seconds=self.poll.max_delay_seconds,
                factor=self.poll.backoff_factor,
            )
            if deadline is not None:
                delay = min(delay, max(deadline - now, 0.0))
            self.sleep(delay)

    def _matches_desired(self, current: StackState, descriptor: StackDescriptor, tags: Mapping[str, str]) -> bool:
        if current.status not in SUCCESS_STATUSES:
            return False
        if any(value == _MASKED_PARAMETER_VALUE for value in current.parameters.values()):
            return False
        if dict(current.parameters) != dict(descriptor.parameters):
            return False
        current_tags = {key: value for key, value in current.tags.items() if key not in VOLATILE_TAG_KEYS}
        wanted_tags = {key: value for key, value in tags.items() if key not in VOLATILE_TAG_KEYS}
        if current_tags != wanted_tags:
            return False
        try:
            body = self.control_plane.get_template_body(descriptor.name)
        except ControlPlaneError as exc:
            logger.info("XAD: current template unavailable, submitting (stack=%s, code=%s)", descriptor.name, exc.code)
            return False
        return body == descriptor.template.body

    def _no_op(self, transitions: list[ReconcileState], current: StackState | None) -> DeploymentOutcome:
        transitions.extend([ReconcileState.EXTRACTING_OUTPUTS, ReconcileState.SUCCEEDED])
        return DeploymentOutcome(
            final_status=FinalStatus.SUCCEEDED,
            outputs=dict(current.outputs) if current else {},
            operation="none",
            changed=False,
            stack_status=current.status if current else None,
            transitions=tuple(transitions),
        )

    def _failed_resources(self, name: str) -> tuple[FailedResource, ...]:
        try:
            events = self.control_plane.describe_stack_events(name)
        except ControlPlaneError as exc:
            logger.warning("XAD: stack events unavailable (stack=%s, code=%s)", name, exc.code)
            return ()
        failed: list[FailedResource] = []
        for event in events:
            status = str(event.get("ResourceStatus", ""))
            if "FAILED" not in status:
                continue
            failed.append(
                FailedResource(
                    logical_id=str(event.get("LogicalResourceId", "")),
                    resource_type=str(event.get("ResourceType", "")),
                    status=status,
                    reason=str(event.get("ResourceStatusReason", "") or "No reason provided"),
                )
            )
        return tuple(failed)

    def _failed(
        self,
        transitions: list[ReconcileState],
        detail: str,
        *,
        operation: str = "none",
        kind: ErrorKind = ErrorKind.RECONCILIATION,
        stack_status: str | None = None,
        failed_resources: tuple[FailedResource, ...] = (),
        changed: bool = False,
    ) -> DeploymentOutcome:
        transitions.append(ReconcileState.FAILED)
        return DeploymentOutcome(
            final_status=FinalStatus.FAILED,
            error_kind=kind,
            error_detail=detail,
            operation=operation,
            changed=changed,
            stack_status=stack_status,
            transitions=tuple(transitions),
            failed_resources=failed_resources,
        )
