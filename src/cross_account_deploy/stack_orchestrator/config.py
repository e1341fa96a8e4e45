"""Configuration loader for deploy profiles and workflow requests."""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ACCOUNT_ID_PATTERN = re.compile(r"^[0-9]{12}$")
_STACK_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]{0,127}$")

DEFAULT_ROLE_NAME = "CrossAccountInfraDeploymentRole"
DEFAULT_EXTERNAL_ID = "cross-account-infra-deploy-2024"
DEFAULT_REGION = "eu-north-1"
DEFAULT_ROLE_STACK_NAME = "CrossAccount-Deployment-Role"
DEFAULT_PIPELINE_STACK_NAME = "CrossAccount-Pipeline"
DEFAULT_KNOWN_REGIONS = ["us-east-1", "us-west-2", "eu-west-1", "eu-central-1", "ap-southeast-1"]


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class PollSettings(BaseModel):
    initial_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0
    backoff_factor: float = 2.0
    timeout_seconds: float | None = None
    stale_status_polls: int = 3
    describe_attempts: int = 4

    @field_validator("initial_delay_seconds", "max_delay_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("poll delays must be >= 0")
        return value

    @field_validator("backoff_factor")
    @classmethod
    def _factor(cls, value: float) -> float:
        if value < 1:
            raise ValueError("backoff_factor must be >= 1")
        return value


class DeployProfile(BaseModel):
    profile_id: str = "local"
    aws_profile: str | None = None
    region: str = DEFAULT_REGION
    endpoint_url: str | None = None
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 15.0
    poll: PollSettings = Field(default_factory=PollSettings)
    project_tag: str = "CrossAccountInfraDeployment"
    managed_by_tag: str = "cross-account-deploy"
    known_regions: list[str] = Field(default_factory=lambda: list(DEFAULT_KNOWN_REGIONS))
    validation_workers: int = 4
    templates_root: str = "templates"
    role_template_path: str = "templates/cross-account/deployment-role.yaml"
    pipeline_template_path: str = "templates/pipeline/codepipeline.yaml"

    @field_validator("validation_workers")
    @classmethod
    def _workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("validation_workers must be >= 1")
        return value


def _account_id(value: str) -> str:
    normalized = str(value or "").strip()
    if not _ACCOUNT_ID_PATTERN.match(normalized):
        raise ValueError("account id must be a 12-digit number")
    return normalized


def _required_text(value: str) -> str:
    normalized = str(value or "").strip()
    if not normalized:
        raise ValueError("value must not be empty")
    return normalized


def _stack_name(value: str) -> str:
    normalized = str(value or "").strip()
    if not _STACK_NAME_PATTERN.match(normalized):
        raise ValueError("stack name must start with a letter and contain only letters, digits and hyphens")
    return normalized


class RoleWorkflowRequest(BaseModel):
    """Inputs for establishing the cross-account role in the target account."""

    source_account_id: str
    role_name: str = DEFAULT_ROLE_NAME
    external_id: str = Field(default=DEFAULT_EXTERNAL_ID, repr=False)
    region: str = DEFAULT_REGION
    stack_name: str = DEFAULT_ROLE_STACK_NAME
    template_path: str
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("source_account_id")
    @classmethod
    def _check_account(cls, value: str) -> str:
        return _account_id(value)

    @field_validator("role_name", "external_id", "region", "template_path")
    @classmethod
    def _check_text(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("stack_name")
    @classmethod
    def _check_stack(cls, value: str) -> str:
        return _stack_name(value)


class PipelineWorkflowRequest(BaseModel):
    """Inputs for deploying the pipeline stack in the source account."""

    target_account_id: str
    github_owner: str
    github_repo: str
    github_branch: str = "main"
    github_token: str = Field(repr=False)
    role_name: str = DEFAULT_ROLE_NAME
    external_id: str = Field(default=DEFAULT_EXTERNAL_ID, repr=False)
    environment: Environment = Environment.PRODUCTION
    region: str = DEFAULT_REGION
    stack_name: str = DEFAULT_PIPELINE_STACK_NAME
    template_path: str
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("target_account_id")
    @classmethod
    def _check_account(cls, value: str) -> str:
        return _account_id(value)

    @field_validator(
        "github_owner",
        "github_repo",
        "github_branch",
        "github_token",
        "role_name",
        "external_id",
        "region",
        "template_path",
    )
    @classmethod
    def _check_text(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("stack_name")
    @classmethod
    def _check_stack(cls, value: str) -> str:
        return _stack_name(value)


def _configuration_error(exc: ValidationError) -> ConfigurationError:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}")
    return ConfigurationError("; ".join(problems) or str(exc))


def build_role_request(**values: Any) -> RoleWorkflowRequest:
    try:
        return RoleWorkflowRequest(**values)
    except ValidationError as exc:
        raise _configuration_error(exc) from exc


def build_pipeline_request(**values: Any) -> PipelineWorkflowRequest:
    try:
        return PipelineWorkflowRequest(**values)
    except ValidationError as exc:
        raise _configuration_error(exc) from exc


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ConfigurationError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value


def profile_from_mapping(payload: Mapping[str, Any] | None) -> DeployProfile:
    expanded = _expand_payload(dict(payload or {}))
    try:
        return DeployProfile(**expanded)
    except ValidationError as exc:
        raise _configuration_error(exc) from exc


def load_profile(path: Path | None) -> DeployProfile:
    if path is None:
        return profile_from_mapping({})
    if not path.exists():
        raise ConfigurationError(f"deploy profile not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"deploy profile must be a mapping: {path}")
    return profile_from_mapping(data)
