"""Cross-account trust verification via a single-shot role assumption."""

from __future__ import annotations

import logging
import time
from typing import Callable

from .control_plane import ControlPlane, ControlPlaneError, RemoteRejected, RemoteUnavailable
from .errors import TrustError
from .ids import session_name_for
from .models import TrustContext, TrustFailureReason, TrustVerificationResult
from .security import scrub_text

logger = logging.getLogger(__name__)

_ROLE_MISSING_MARKERS = ("does not exist", "cannot be found", "nosuchentity")
_EXTERNAL_ID_MARKERS = ("external id", "externalid", "external-id")
_CALLER_DENIED_MARKERS = ("no identity-based policy allows", "explicit deny in an identity-based policy")


def classify_assume_role_failure(error: ControlPlaneError) -> TrustFailureReason:
    """Map an AssumeRole rejection onto a failure reason.

    STS reports most trust problems as a generic ``AccessDenied``; anything that
    carries no more specific marker is attributed to the role's trust policy.

    STS does not name the external id in its ``AccessDenied`` message, so a
    wrong external id against real AWS lands in ``TRUST_POLICY_REJECTED``.
    ``EXTERNAL_ID_MISMATCH`` is only reported by endpoints (such as local
    emulators) whose message mentions the external id.
    """
    if isinstance(error, RemoteUnavailable):
        return TrustFailureReason.NETWORK
    code = error.code.lower()
    message = error.message.lower()
    if code == "nosuchentity" or any(marker in message for marker in _ROLE_MISSING_MARKERS):
        return TrustFailureReason.ROLE_NOT_FOUND
    if any(marker in message for marker in _EXTERNAL_ID_MARKERS):
        return TrustFailureReason.EXTERNAL_ID_MISMATCH
    if any(marker in message for marker in _CALLER_DENIED_MARKERS):
        return TrustFailureReason.CALLER_NOT_PERMITTED
    return TrustFailureReason.TRUST_POLICY_REJECTED


class TrustVerifier:
    def __init__(
        self,
        control_plane: ControlPlane,
        *,
        session_prefix: str = "trust-check",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.control_plane = control_plane
        self.session_prefix = session_prefix
        self.clock = clock

    def verify(self, context: TrustContext) -> TrustVerificationResult:
        role_arn = context.role_arn
        session_name = session_name_for(self.session_prefix, int(self.clock()))
        logger.info(
            "XAD: testing role assumption (role_arn=%s, caller_account=%s)",
            role_arn,
            context.caller_account_id,
        )
        try:
            assumed = self.control_plane.assume_role(role_arn, context.external_id, session_name)
        except (RemoteRejected, RemoteUnavailable) as exc:
            reason = classify_assume_role_failure(exc)
            detail = scrub_text(f"{exc.code}: {exc.message}", [context.external_id])
            logger.warning(
                "XAD: role assumption failed (role_arn=%s, reason=%s, detail=%s)",
                role_arn,
                reason.value,
                detail,
            )
            return TrustVerificationResult(
                assumable=False,
                role_arn=role_arn,
                failure_reason=reason,
                detail=detail,
            )
        logger.info("XAD: role assumption passed (role_arn=%s, session=%s)", role_arn, assumed.assumed_role_arn)
        return TrustVerificationResult(assumable=True, role_arn=role_arn)

    def require(self, context: TrustContext) -> TrustVerificationResult:
        """Verify and raise :class:`TrustError` when the role is not assumable."""
        result = self.verify(context)
        if not result.assumable:
            reason = result.failure_reason.value if result.failure_reason else "UNKNOWN"
            raise TrustError(f"cannot assume {result.role_arn}: {reason}: {result.detail}")
        return result
