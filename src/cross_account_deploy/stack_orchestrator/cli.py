"""CLI for cross-account template validation and stack deployment."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any, Sequence

from .config import DeployProfile, Environment, load_profile
from .confirm import AlwaysConfirm, InteractiveConfirm
from .control_plane import build_control_plane
from .errors import AuthenticationError, ConfigurationError, ErrorKind
from .logging_utils import configure_logging
from .models import FinalStatus, WorkflowReport
from .orchestrator import DeploymentOrchestrator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--profile-file", default=None, help="Path to deploy profile YAML")
    base.add_argument("--log-path", default=None, help="Write the stage log to this file")
    base.add_argument("--aws-profile", default=None, help="Named AWS profile (overrides the deploy profile)")
    base.add_argument("--region", default=None)
    base.add_argument("--yes", action="store_true", help="Update existing stacks without asking")

    parser = argparse.ArgumentParser(description="Cross-account deployment CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", parents=[base], help="Validate every template under a root")
    validate_parser.add_argument("--templates-root", default=None)

    role_parser = subparsers.add_parser("role", parents=[base], help="Deploy the cross-account role (target account)")
    role_parser.add_argument("--source-account", required=True, help="Account allowed to assume the role")
    role_parser.add_argument("--role-name", default=None)
    role_parser.add_argument("--external-id", default=None)
    role_parser.add_argument("--stack-name", default=None)
    role_parser.add_argument("--template", default=None)
    role_parser.add_argument("--tag", action="append", default=[], metavar="KEY=VALUE")

    pipeline_parser = subparsers.add_parser("pipeline", parents=[base], help="Deploy the pipeline (source account)")
    pipeline_parser.add_argument("--target-account", required=True)
    pipeline_parser.add_argument("--github-owner", required=True)
    pipeline_parser.add_argument("--github-repo", required=True)
    pipeline_parser.add_argument("--github-branch", default=None)
    pipeline_parser.add_argument("--github-token", default=None, help="Defaults to $GITHUB_TOKEN")
    pipeline_parser.add_argument("--cross-account-role-name", default=None)
    pipeline_parser.add_argument("--external-id", default=None)
    pipeline_parser.add_argument("--environment", default=None, help=f"One of {[e.value for e in Environment]}")
    pipeline_parser.add_argument("--stack-name", default=None)
    pipeline_parser.add_argument("--template", default=None)
    pipeline_parser.add_argument("--tag", action="append", default=[], metavar="KEY=VALUE")

    return parser.parse_args(argv)


def _parse_tags(values: Sequence[str]) -> dict[str, str]:
    tags: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"tag must be KEY=VALUE: {item}")
        tags[key.strip()] = value
    return tags


def _drop_unset(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _role_values(args: argparse.Namespace, profile: DeployProfile, region: str) -> dict[str, Any]:
    return _drop_unset(
        {
            "source_account_id": args.source_account,
            "role_name": args.role_name,
            "external_id": args.external_id,
            "region": region,
            "stack_name": args.stack_name,
            "template_path": args.template or profile.role_template_path,
            "tags": _parse_tags(args.tag),
        }
    )


def _pipeline_values(args: argparse.Namespace, profile: DeployProfile, region: str) -> dict[str, Any]:
    return _drop_unset(
        {
            "target_account_id": args.target_account,
            "github_owner": args.github_owner,
            "github_repo": args.github_repo,
            "github_branch": args.github_branch,
            "github_token": args.github_token or os.getenv("GITHUB_TOKEN"),
            "role_name": args.cross_account_role_name,
            "external_id": args.external_id,
            "environment": args.environment,
            "region": region,
            "stack_name": args.stack_name,
            "template_path": args.template or profile.pipeline_template_path,
            "tags": _parse_tags(args.tag),
        }
    )


def _report_exit_code(report: WorkflowReport) -> int:
    if report.final_status != FinalStatus.FAILED:
        return EXIT_OK
    if report.error_kind == ErrorKind.CONFIGURATION:
        return EXIT_CONFIG
    return EXIT_FAILED


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, sort_keys=True, indent=2, default=str))


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(log_path=args.log_path)
    try:
        profile = load_profile(Path(args.profile_file) if args.profile_file else None)
        region = args.region or profile.region
        control_plane = build_control_plane(
            region=region,
            aws_profile=args.aws_profile or profile.aws_profile,
            endpoint_url=profile.endpoint_url,
            connect_timeout_seconds=profile.connect_timeout_seconds,
            read_timeout_seconds=profile.read_timeout_seconds,
        )
        confirmation = AlwaysConfirm() if args.yes else InteractiveConfirm()
        orchestrator = DeploymentOrchestrator(control_plane, confirmation, profile)

        if args.command == "validate":
            root = Path(args.templates_root) if args.templates_root else None
            batch = orchestrator.validate_templates(root)
            _print(batch.to_dict())
            return batch.exit_code
        if args.command == "role":
            report = orchestrator.establish_trust_role(_role_values(args, profile, region))
        else:
            report = orchestrator.deploy_pipeline(_pipeline_values(args, profile, region))
    except ConfigurationError as exc:
        _print({"error_kind": ErrorKind.CONFIGURATION.value, "error_detail": str(exc)})
        return EXIT_CONFIG
    except AuthenticationError as exc:
        _print({"error_kind": ErrorKind.AUTHENTICATION.value, "error_detail": str(exc)})
        return EXIT_FAILED
    _print(report.to_dict())
    return _report_exit_code(report)


if __name__ == "__main__":
    raise SystemExit(main())
