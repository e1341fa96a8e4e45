from __future__ import annotations

import pytest

from cross_account_deploy.stack_orchestrator.control_plane import AssumedRole, RemoteRejected, RemoteUnavailable
from cross_account_deploy.stack_orchestrator.errors import AuthenticationError, TrustError
from cross_account_deploy.stack_orchestrator.models import TrustContext, TrustFailureReason
from cross_account_deploy.stack_orchestrator.trust import TrustVerifier, classify_assume_role_failure

SOURCE = "111111111111"
TARGET = "222222222222"


class FakeTrustPolicy:
    """Role in the target account that trusts ``trusted_account`` with ``expected_external_id``."""

    def __init__(self, *, role_name: str, trusted_account: str, expected_external_id: str) -> None:
        self.role_arn = f"arn:aws:iam::{TARGET}:role/{role_name}"
        self.trusted_account = trusted_account
        self.expected_external_id = expected_external_id
        self.caller_account = SOURCE
        self.calls: list[tuple[str, str, str]] = []

    def assume_role(self, role_arn: str, external_id: str, session_name: str) -> AssumedRole:
        self.calls.append((role_arn, external_id, session_name))
        if role_arn != self.role_arn:
            raise RemoteRejected("AccessDenied", f"Role {role_arn} does not exist", "AssumeRole")
        if self.caller_account != self.trusted_account:
            raise RemoteRejected(
                "AccessDenied",
                f"User: arn:aws:iam::{self.caller_account}:user/dev is not authorized to perform: sts:AssumeRole",
                "AssumeRole",
            )
        if external_id != self.expected_external_id:
            raise RemoteRejected("AccessDenied", f"The external id {external_id} does not satisfy the trust policy", "AssumeRole")
        return AssumedRole(assumed_role_arn=f"arn:aws:sts::{TARGET}:assumed-role/{role_arn.split('/')[-1]}/{session_name}")


def _context(external_id: str, role_name: str = "CrossAccountInfraDeploymentRole") -> TrustContext:
    return TrustContext(
        caller_account_id=SOURCE,
        target_account_id=TARGET,
        role_name=role_name,
        external_id=external_id,
    )


def _policy() -> FakeTrustPolicy:
    return FakeTrustPolicy(
        role_name="CrossAccountInfraDeploymentRole",
        trusted_account=SOURCE,
        expected_external_id="cross-account-infra-deploy-2024",
    )


def test_assumable_role_passes() -> None:
    policy = _policy()
    verifier = TrustVerifier(policy, clock=lambda: 1700000000.0)

    result = verifier.verify(_context("cross-account-infra-deploy-2024"))

    assert result.assumable is True
    assert result.failure_reason is None
    assert result.role_arn == policy.role_arn
    assert policy.calls[0][2] == "trust-check-1700000000"


def test_wrong_external_id_is_mismatch() -> None:
    verifier = TrustVerifier(_policy())

    result = verifier.verify(_context("wrong-id"))

    assert result.assumable is False
    assert result.failure_reason == TrustFailureReason.EXTERNAL_ID_MISMATCH
    assert "wrong-id" not in (result.detail or "")


def test_missing_role_is_role_not_found() -> None:
    result = TrustVerifier(_policy()).verify(_context("cross-account-infra-deploy-2024", role_name="Other"))

    assert result.failure_reason == TrustFailureReason.ROLE_NOT_FOUND


def test_untrusted_caller_is_trust_policy_rejection() -> None:
    policy = _policy()
    policy.caller_account = "333333333333"

    result = TrustVerifier(policy).verify(_context("cross-account-infra-deploy-2024"))

    assert result.failure_reason == TrustFailureReason.TRUST_POLICY_REJECTED


def test_network_failure_is_reported_not_raised() -> None:
    class Unreachable:
        def assume_role(self, role_arn: str, external_id: str, session_name: str) -> AssumedRole:
            raise RemoteUnavailable("NetworkError", "Connect timeout on endpoint URL", "AssumeRole")

    result = TrustVerifier(Unreachable()).verify(_context("x"))

    assert result.assumable is False
    assert result.failure_reason == TrustFailureReason.NETWORK


def test_expired_caller_credentials_propagate() -> None:
    class Expired:
        def assume_role(self, role_arn: str, external_id: str, session_name: str) -> AssumedRole:
            raise AuthenticationError("AssumeRole: ExpiredToken: The security token included in the request is expired")

    with pytest.raises(AuthenticationError):
        TrustVerifier(Expired()).verify(_context("x"))


def test_require_raises_trust_error() -> None:
    with pytest.raises(TrustError, match="EXTERNAL_ID_MISMATCH"):
        TrustVerifier(_policy()).require(_context("wrong-id"))


@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (RemoteRejected("NoSuchEntity", "role missing", "AssumeRole"), TrustFailureReason.ROLE_NOT_FOUND),
        (
            RemoteRejected(
                "AccessDenied",
                "User is not authorized to perform: sts:AssumeRole because no identity-based policy allows the sts:AssumeRole action",
                "AssumeRole",
            ),
            TrustFailureReason.CALLER_NOT_PERMITTED,
        ),
        (RemoteRejected("AccessDenied", "Access denied", "AssumeRole"), TrustFailureReason.TRUST_POLICY_REJECTED),
        # What STS returns for a wrong external id.
        (
            RemoteRejected(
                "AccessDenied",
                f"User: arn:aws:iam::{SOURCE}:user/dev is not authorized to perform: sts:AssumeRole"
                f" on resource: arn:aws:iam::{TARGET}:role/CrossAccountInfraDeploymentRole",
                "AssumeRole",
            ),
            TrustFailureReason.TRUST_POLICY_REJECTED,
        ),
        (RemoteUnavailable("Throttling", "Rate exceeded", "AssumeRole"), TrustFailureReason.NETWORK),
    ],
)
def test_failure_classification(error: Exception, reason: TrustFailureReason) -> None:
    assert classify_assume_role_failure(error) == reason
