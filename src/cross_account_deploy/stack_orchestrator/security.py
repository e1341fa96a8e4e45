"""Redaction helpers for secrets that flow through the deployment stages."""

from __future__ import annotations

from typing import Iterable, Mapping

SENSITIVE_PARAMETER_KEYS = frozenset({"ExternalId", "GitHubToken"})
_MASK = "***"


def _is_sensitive(key: str, keys: set[str]) -> bool:
    upper = key.upper()
    return upper in keys or "TOKEN" in upper or "SECRET" in upper or "PASSWORD" in upper


def redact_parameters(
    parameters: Mapping[str, str],
    sensitive_keys: Iterable[str] | None = None,
) -> dict[str, str]:
    keys = {key.upper() for key in (sensitive_keys or SENSITIVE_PARAMETER_KEYS)}
    redacted: dict[str, str] = {}
    for key, value in parameters.items():
        if _is_sensitive(key, keys):
            redacted[key] = _MASK
        else:
            redacted[key] = value
    return redacted


def scrub_text(text: str | None, secrets: Iterable[str | None]) -> str | None:
    """Remove literal secret values from a free-form message."""
    if text is None:
        return None
    scrubbed = text
    for secret in secrets:
        if secret:
            scrubbed = scrubbed.replace(secret, _MASK)
    return scrubbed


def sensitive_values(
    parameters: Mapping[str, str],
    sensitive_keys: Iterable[str] | None = None,
) -> list[str]:
    """Return the parameter values that :func:`redact_parameters` would mask."""
    keys = {key.upper() for key in (sensitive_keys or SENSITIVE_PARAMETER_KEYS)}
    return [value for key, value in parameters.items() if value and _is_sensitive(key, keys)]
