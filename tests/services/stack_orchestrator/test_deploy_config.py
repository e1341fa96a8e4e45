from __future__ import annotations

from pathlib import Path

import pytest

from cross_account_deploy.stack_orchestrator.config import (
    DEFAULT_KNOWN_REGIONS,
    Environment,
    PollSettings,
    build_pipeline_request,
    build_role_request,
    load_profile,
)
from cross_account_deploy.stack_orchestrator.errors import ConfigurationError


def test_defaults_without_profile_file() -> None:
    profile = load_profile(None)

    assert profile.region == "eu-north-1"
    assert profile.known_regions == DEFAULT_KNOWN_REGIONS
    assert profile.poll.stale_status_polls == 3
    assert profile.poll.timeout_seconds is None


def test_profile_expands_environment_variables(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XAD_ENDPOINT", "http://localhost:4566")
    monkeypatch.delenv("XAD_REGION", raising=False)
    path = tmp_path / "profile.yaml"
    path.write_text(
        "\n".join(
            [
                "profile_id: localstack",
                "region: ${XAD_REGION:-us-east-1}",
                "endpoint_url: ${XAD_ENDPOINT}",
                "poll:",
                "  initial_delay_seconds: 0.5",
                "  timeout_seconds: 600",
                "known_regions: [eu-north-1]",
            ]
        ),
        encoding="utf-8",
    )

    profile = load_profile(path)

    assert profile.region == "us-east-1"
    assert profile.endpoint_url == "http://localhost:4566"
    assert profile.poll.initial_delay_seconds == 0.5
    assert profile.poll.timeout_seconds == 600
    assert profile.known_regions == ["eu-north-1"]


def test_missing_environment_variable_is_configuration_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("XAD_MISSING", raising=False)
    path = tmp_path / "profile.yaml"
    path.write_text("aws_profile: ${XAD_MISSING}\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="XAD_MISSING"):
        load_profile(path)


def test_missing_profile_file_is_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_profile(tmp_path / "absent.yaml")


def test_non_mapping_profile_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "profile.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="mapping"):
        load_profile(path)


def test_invalid_poll_settings_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "profile.yaml"
    path.write_text("poll:\n  backoff_factor: 0.5\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="backoff_factor"):
        load_profile(path)


def test_poll_settings_defaults() -> None:
    settings = PollSettings()
    assert settings.initial_delay_seconds == 5.0
    assert settings.max_delay_seconds == 30.0
    assert settings.backoff_factor == 2.0


def test_role_request_defaults() -> None:
    request = build_role_request(source_account_id="111111111111", template_path="role.yaml")

    assert request.role_name == "CrossAccountInfraDeploymentRole"
    assert request.stack_name == "CrossAccount-Deployment-Role"
    assert "cross-account-infra-deploy-2024" not in repr(request)


def test_role_request_rejects_malformed_account() -> None:
    with pytest.raises(ConfigurationError, match="source_account_id"):
        build_role_request(source_account_id="12345", template_path="role.yaml")


def test_pipeline_request_defaults_and_secret_repr() -> None:
    request = build_pipeline_request(
        target_account_id="222222222222",
        github_owner="acme",
        github_repo="infra",
        github_token="ghp_secret",
        template_path="pipeline.yaml",
    )

    assert request.environment == Environment.PRODUCTION
    assert request.github_branch == "main"
    assert request.stack_name == "CrossAccount-Pipeline"
    assert "ghp_secret" not in repr(request)


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("environment", "qa"),
        ("github_token", "  "),
        ("stack_name", "1-bad_name"),
        ("target_account_id", "22222222222a"),
    ],
)
def test_pipeline_request_rejections(field: str, value: str) -> None:
    values = {
        "target_account_id": "222222222222",
        "github_owner": "acme",
        "github_repo": "infra",
        "github_token": "ghp_secret",
        "template_path": "pipeline.yaml",
    }
    values[field] = value

    with pytest.raises(ConfigurationError, match=field):
        build_pipeline_request(**values)
