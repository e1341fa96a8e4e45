from __future__ import annotations

import json
from pathlib import Path

import pytest

from cross_account_deploy.stack_orchestrator import cli
from cross_account_deploy.stack_orchestrator.control_plane import AssumedRole, CallerIdentity
from cross_account_deploy.stack_orchestrator.models import StackState

TEMPLATE = """Description: Cross-account role
Metadata:
  AWS::CloudFormation::Interface: {}
Resources: {}
"""


class FakeAws:
    region = "eu-north-1"

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.stacks: dict[str, StackState] = {}

    def get_caller_identity(self) -> CallerIdentity:
        self.calls.append("GetCallerIdentity")
        return CallerIdentity(account_id="222222222222", arn="arn:aws:iam::222222222222:user/deployer")

    def validate_template(self, body: str) -> dict:
        self.calls.append("ValidateTemplate")
        return {}

    def describe_stack(self, name: str) -> StackState | None:
        self.calls.append("DescribeStacks")
        return self.stacks.get(name)

    def create_stack(self, name, body, parameters, tags, capabilities, request_token) -> str:
        self.calls.append("CreateStack")
        self.stacks[name] = StackState(
            name=name,
            stack_id="s",
            status="CREATE_COMPLETE",
            outputs={"CrossAccountRoleArn": "arn:aws:iam::222222222222:role/CrossAccountInfraDeploymentRole"},
        )
        return "s"

    def get_stack_outputs(self, name: str) -> dict[str, str]:
        return dict(self.stacks[name].outputs)

    def assume_role(self, role_arn: str, external_id: str, session_name: str) -> AssumedRole:
        return AssumedRole(assumed_role_arn=role_arn)


@pytest.fixture()
def fake_aws(monkeypatch: pytest.MonkeyPatch) -> FakeAws:
    fake = FakeAws()
    monkeypatch.setattr(cli, "build_control_plane", lambda **kwargs: fake)
    return fake


def _output(capsys: pytest.CaptureFixture[str]) -> dict:
    return json.loads(capsys.readouterr().out)


def test_validate_command_prints_batch(tmp_path: Path, fake_aws: FakeAws, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "role.yaml").write_text(TEMPLATE, encoding="utf-8")

    code = cli.main(["validate", "--templates-root", str(tmp_path)])

    assert code == 0
    payload = _output(capsys)
    assert payload["valid_count"] == 1
    assert payload["invalid_count"] == 0


def test_validate_missing_root_is_config_exit(tmp_path: Path, fake_aws: FakeAws, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["validate", "--templates-root", str(tmp_path / "absent")])

    assert code == 2
    assert _output(capsys)["error_kind"] == "CONFIGURATION"


def test_role_command_deploys_with_yes(tmp_path: Path, fake_aws: FakeAws, capsys: pytest.CaptureFixture[str]) -> None:
    template = tmp_path / "role.yaml"
    template.write_text(TEMPLATE, encoding="utf-8")

    code = cli.main(
        [
            "role",
            "--yes",
            "--source-account",
            "111111111111",
            "--template",
            str(template),
            "--tag",
            "Owner=platform",
        ]
    )

    assert code == 0
    payload = _output(capsys)
    assert payload["final_status"] == "Succeeded"
    assert payload["identifiers"]["role_arn"].endswith(":role/CrossAccountInfraDeploymentRole")
    assert "CreateStack" in fake_aws.calls


def test_pipeline_with_unknown_environment_exits_before_remote_calls(
    tmp_path: Path, fake_aws: FakeAws, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(
        [
            "pipeline",
            "--target-account",
            "222222222222",
            "--github-owner",
            "acme",
            "--github-repo",
            "infra",
            "--github-token",
            "ghp_secret",
            "--environment",
            "qa",
        ]
    )

    assert code == 2
    payload = _output(capsys)
    assert payload["error_kind"] == "CONFIGURATION"
    assert "ghp_secret" not in json.dumps(payload)
    assert fake_aws.calls == []


def test_malformed_tag_is_config_exit(tmp_path: Path, fake_aws: FakeAws, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["role", "--source-account", "111111111111", "--tag", "no-separator"])

    assert code == 2
    assert "KEY=VALUE" in _output(capsys)["error_detail"]
