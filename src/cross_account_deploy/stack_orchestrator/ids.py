"""Deterministic identifier helpers for stack and role operations."""

from __future__ import annotations

import hashlib
import json
from typing import Mapping


def _hex32_from_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]


def role_arn_for(account_id: str, role_name: str) -> str:
    return f"arn:aws:iam::{account_id}:role/{role_name}"


def session_name_for(prefix: str, epoch_seconds: int) -> str:
    # STS caps RoleSessionName at 64 characters.
    return f"{prefix}-{epoch_seconds}"[:64]


def template_digest(body: str) -> str:
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def client_request_token(
    stack_name: str,
    body: str,
    parameters: Mapping[str, str],
    submitted_at: str,
) -> str:
    """Token that lets CloudFormation de-duplicate a resubmitted request."""
    payload = json.dumps(dict(parameters), sort_keys=True, ensure_ascii=True)
    digest = _hex32_from_text(f"xad_submit|{stack_name}|{template_digest(body)}|{payload}|{submitted_at}")
    return f"xad-{digest}"
