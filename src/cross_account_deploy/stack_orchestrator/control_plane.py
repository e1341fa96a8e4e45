"""Control-plane boundary: the calls the workflows make and their boto3 adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
)

from .errors import AuthenticationError
from .models import StackState

logger = logging.getLogger(__name__)

_AUTH_ERROR_CODES = {
    "AuthFailure",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidAccessKeyId",
    "InvalidClientTokenId",
    "MissingAuthenticationToken",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
}
_TRANSIENT_ERROR_CODES = {
    "InternalError",
    "InternalFailure",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
}
_NETWORK_ERRORS = (ConnectionClosedError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError)
_NO_UPDATES_MARKER = "No updates are to be performed"


class ControlPlaneError(RuntimeError):
    """A control-plane call did not succeed."""

    def __init__(self, code: str, message: str, operation: str) -> None:
        super().__init__(f"{operation}: {code}: {message}")
        self.code = code
        self.message = message
        self.operation = operation


class RemoteRejected(ControlPlaneError):
    """The remote API refused the request (validation, permissions, conflicts)."""


class RemoteUnavailable(ControlPlaneError):
    """Throttling, service or network failure; the same call may succeed later."""


@dataclass(frozen=True)
class CallerIdentity:
    account_id: str
    arn: str
    user_id: str = ""


@dataclass(frozen=True)
class AssumedRole:
    assumed_role_arn: str
    expiration: datetime | None = None


class ControlPlane(Protocol):
    region: str

    def get_caller_identity(self) -> CallerIdentity:
        ...

    def validate_template(self, body: str) -> dict[str, Any]:
        ...

    def describe_stack(self, name: str) -> StackState | None:
        ...

    def get_template_body(self, name: str) -> str:
        ...

    def create_stack(
        self,
        name: str,
        body: str,
        parameters: Mapping[str, str],
        tags: Mapping[str, str],
        capabilities: Sequence[str],
        request_token: str,
    ) -> str:
        ...

    def update_stack(
        self,
        name: str,
        body: str,
        parameters: Mapping[str, str],
        tags: Mapping[str, str],
        capabilities: Sequence[str],
        request_token: str,
    ) -> str | None:
        ...

    def describe_stack_events(self, name: str, limit: int = 25) -> list[dict[str, Any]]:
        ...

    def get_stack_outputs(self, name: str) -> dict[str, str]:
        ...

    def assume_role(self, role_arn: str, external_id: str, session_name: str) -> AssumedRole:
        ...

    def get_pipeline_state(self, name: str) -> str | None:
        ...

    def start_pipeline_execution(self, name: str) -> str:
        ...


def translate_error(exc: Exception, operation: str) -> Exception:
    """Map a botocore failure onto the deployment error vocabulary."""
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError, ProfileNotFound)):
        return AuthenticationError(f"{operation}: {exc}")
    if isinstance(exc, _NETWORK_ERRORS):
        return RemoteUnavailable("NetworkError", str(exc), operation)
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code") or "Unknown")
        message = str(error.get("Message") or "")
        if code in _AUTH_ERROR_CODES:
            return AuthenticationError(f"{operation}: {code}: {message}")
        if code in _TRANSIENT_ERROR_CODES:
            return RemoteUnavailable(code, message, operation)
        return RemoteRejected(code, message, operation)
    if isinstance(exc, BotoCoreError):
        return RemoteUnavailable(type(exc).__name__, str(exc), operation)
    return exc


def _parameter_list(parameters: Mapping[str, str]) -> list[dict[str, str]]:
    return [{"ParameterKey": key, "ParameterValue": value} for key, value in parameters.items()]


def _tag_list(tags: Mapping[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def stack_state_from_payload(payload: Mapping[str, Any]) -> StackState:
    parameters = {
        str(item.get("ParameterKey")): str(item.get("ParameterValue", ""))
        for item in payload.get("Parameters", []) or []
        if item.get("ParameterKey")
    }
    tags = {str(item.get("Key")): str(item.get("Value", "")) for item in payload.get("Tags", []) or [] if item.get("Key")}
    outputs = {
        str(item.get("OutputKey")): str(item.get("OutputValue"))
        for item in payload.get("Outputs", []) or []
        if item.get("OutputKey") and item.get("OutputValue") is not None
    }
    return StackState(
        name=str(payload.get("StackName", "")),
        stack_id=str(payload.get("StackId", "")),
        status=str(payload.get("StackStatus", "")),
        status_reason=payload.get("StackStatusReason"),
        parameters=parameters,
        tags=tags,
        outputs=outputs,
        last_updated=payload.get("LastUpdatedTime") or payload.get("CreationTime"),
    )


class AwsControlPlane:
    """boto3-backed implementation of :class:`ControlPlane`."""

    def __init__(
        self,
        session: Any,
        *,
        region: str,
        endpoint_url: str | None = None,
        connect_timeout_seconds: float = 5.0,
        read_timeout_seconds: float = 15.0,
    ) -> None:
        self.session = session
        self.region = region
        self.endpoint_url = endpoint_url
        self.connect_timeout_seconds = connect_timeout_seconds
        self.read_timeout_seconds = read_timeout_seconds
        self._clients: dict[str, Any] = {}

    def _client(self, service: str, *, single_shot: bool = False) -> Any:
        key = f"{service}:single" if single_shot else service
        client = self._clients.get(key)
        if client is None:
            retries = {"total_max_attempts": 1} if single_shot else {"max_attempts": 5, "mode": "standard"}
            config = Config(
                connect_timeout=self.connect_timeout_seconds,
                read_timeout=self.read_timeout_seconds,
                retries=retries,
            )
            client = self.session.client(
                service,
                region_name=self.region,
                endpoint_url=self.endpoint_url,
                config=config,
            )
            self._clients[key] = client
        return client

    def _call(self, operation: str, func: Any, **kwargs: Any) -> Any:
        try:
            return func(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise translate_error(exc, operation) from exc

    def get_caller_identity(self) -> CallerIdentity:
        sts = self._client("sts")
        response = self._call("GetCallerIdentity", sts.get_caller_identity)
        return CallerIdentity(
            account_id=str(response.get("Account", "")),
            arn=str(response.get("Arn", "")),
            user_id=str(response.get("UserId", "")),
        )

    def validate_template(self, body: str) -> dict[str, Any]:
        cfn = self._client("cloudformation")
        response = self._call("ValidateTemplate", cfn.validate_template, TemplateBody=body)
        return {
            "description": response.get("Description"),
            "parameters": [item.get("ParameterKey") for item in response.get("Parameters", []) or []],
            "capabilities": list(response.get("Capabilities", []) or []),
        }

    def describe_stack(self, name: str) -> StackState | None:
        cfn = self._client("cloudformation")
        try:
            response = cfn.describe_stacks(StackName=name)
        except ClientError as exc:
            message = str(exc.response.get("Error", {}).get("Message") or "")
            if "does not exist" in message:
                return None
            raise translate_error(exc, "DescribeStacks") from exc
        except BotoCoreError as exc:
            raise translate_error(exc, "DescribeStacks") from exc
        stacks = response.get("Stacks") or []
        if not stacks:
            return None
        return stack_state_from_payload(stacks[0])

    def get_template_body(self, name: str) -> str:
        cfn = self._client("cloudformation")
        response = self._call("GetTemplate", cfn.get_template, StackName=name, TemplateStage="Original")
        body = response.get("TemplateBody", "")
        if isinstance(body, str):
            return body
        # boto3 decodes JSON template bodies into mappings.
        return json.dumps(body)

    def create_stack(
        self,
        name: str,
        body: str,
        parameters: Mapping[str, str],
        tags: Mapping[str, str],
        capabilities: Sequence[str],
        request_token: str,
    ) -> str:
        cfn = self._client("cloudformation")
        response = self._call(
            "CreateStack",
            cfn.create_stack,
            StackName=name,
            TemplateBody=body,
            Parameters=_parameter_list(parameters),
            Tags=_tag_list(tags),
            Capabilities=list(capabilities),
            ClientRequestToken=request_token,
        )
        stack_id = str(response.get("StackId", ""))
        logger.info("XAD: create submitted (stack=%s, stack_id=%s)", name, stack_id)
        return stack_id

    def update_stack(
        self,
        name: str,
        body: str,
        parameters: Mapping[str, str],
        tags: Mapping[str, str],
        capabilities: Sequence[str],
        request_token: str,
    ) -> str | None:
        cfn = self._client("cloudformation")
        try:
            response = cfn.update_stack(
                StackName=name,
                TemplateBody=body,
                Parameters=_parameter_list(parameters),
                Tags=_tag_list(tags),
                Capabilities=list(capabilities),
                ClientRequestToken=request_token,
            )
        except ClientError as exc:
            message = str(exc.response.get("Error", {}).get("Message") or "")
            if _NO_UPDATES_MARKER in message:
                logger.info("XAD: update not required (stack=%s)", name)
                return None
            raise translate_error(exc, "UpdateStack") from exc
        except BotoCoreError as exc:
            raise translate_error(exc, "UpdateStack") from exc
        stack_id = str(response.get("StackId", ""))
        logger.info("XAD: update submitted (stack=%s, stack_id=%s)", name, stack_id)
        return stack_id

    def describe_stack_events(self, name: str, limit: int = 25) -> list[dict[str, Any]]:
        cfn = self._client("cloudformation")
        response = self._call("DescribeStackEvents", cfn.describe_stack_events, StackName=name)
        return list(response.get("StackEvents", []) or [])[:limit]

    def get_stack_outputs(self, name: str) -> dict[str, str]:
        state = self.describe_stack(name)
        if state is None:
            raise RemoteRejected("ValidationError", f"Stack with id {name} does not exist", "DescribeStacks")
        return dict(state.outputs)

    def assume_role(self, role_arn: str, external_id: str, session_name: str) -> AssumedRole:
        sts = self._client("sts", single_shot=True)
        response = self._call(
            "AssumeRole",
            sts.assume_role,
            RoleArn=role_arn,
            RoleSessionName=session_name,
            ExternalId=external_id,
            DurationSeconds=900,
        )
        # Only the identity is kept; the temporary credentials go out of scope here.
        assumed = response.get("AssumedRoleUser", {}) or {}
        credentials = response.get("Credentials", {}) or {}
        return AssumedRole(
            assumed_role_arn=str(assumed.get("Arn", "")),
            expiration=credentials.get("Expiration"),
        )

    def get_pipeline_state(self, name: str) -> str | None:
        codepipeline = self._client("codepipeline")
        response = self._call("GetPipelineState", codepipeline.get_pipeline_state, name=name)
        stages = response.get("stageStates", []) or []
        if not stages:
            return None
        latest = stages[0].get("latestExecution") or {}
        return latest.get("status")

    def start_pipeline_execution(self, name: str) -> str:
        codepipeline = self._client("codepipeline")
        response = self._call("StartPipelineExecution", codepipeline.start_pipeline_execution, name=name)
        return str(response.get("pipelineExecutionId", ""))


def build_control_plane(
    *,
    region: str,
    aws_profile: str | None = None,
    endpoint_url: str | None = None,
    connect_timeout_seconds: float = 5.0,
    read_timeout_seconds: float = 15.0,
) -> AwsControlPlane:
    try:
        session = boto3.Session(profile_name=aws_profile, region_name=region)
    except ProfileNotFound as exc:
        raise AuthenticationError(f"AWS profile not found: {aws_profile}") from exc
    return AwsControlPlane(
        session,
        region=region,
        endpoint_url=endpoint_url,
        connect_timeout_seconds=connect_timeout_seconds,
        read_timeout_seconds=read_timeout_seconds,
    )
