"""Template validation: remote structural parse plus local advisory scans."""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Iterable, Sequence

from .config import DEFAULT_KNOWN_REGIONS
from .control_plane import ControlPlane, RemoteRejected, RemoteUnavailable
from .errors import AuthenticationError, ConfigurationError, TemplateValidationError
from .models import (
    AdvisoryWarning,
    BatchValidationResult,
    StructuralError,
    TemplateDescriptor,
    ValidationResult,
    WarningCategory,
)

logger = logging.getLogger(__name__)

_ACCOUNT_ARN_PATTERN = re.compile(r"arn:aws:iam::([0-9]{12}):")
_LINE_LOCATOR_PATTERN = re.compile(r"line\s+(\d+)", re.IGNORECASE)
_POSITION_LOCATOR_PATTERN = re.compile(r"\[(\d+),\s*\d+\]")
_REGION_EXEMPT_MARKER = "# region:"
_DESCRIPTION_PATTERN = re.compile(r"^Description\s*:", re.MULTILINE)
_METADATA_PATTERN = re.compile(r"^Metadata\s*:", re.MULTILINE)
_INTERFACE_KEY = "AWS::CloudFormation::Interface"
_TEMPLATE_SUFFIXES = (".yaml", ".yml")


def _line_from_message(message: str) -> int | None:
    match = _LINE_LOCATOR_PATTERN.search(message) or _POSITION_LOCATOR_PATTERN.search(message)
    return int(match.group(1)) if match else None


def _json_document(body: str) -> dict[str, Any] | None:
    if not body.lstrip().startswith("{"):
        return None
    try:
        loaded = json.loads(body)
    except json.JSONDecodeError:
        return None
    return loaded if isinstance(loaded, dict) else None


def scan_hardcoded_accounts(template: TemplateDescriptor) -> list[AdvisoryWarning]:
    warnings: list[AdvisoryWarning] = []
    for line_no, line in enumerate(template.body.splitlines(), start=1):
        for match in _ACCOUNT_ARN_PATTERN.finditer(line):
            warnings.append(
                AdvisoryWarning(
                    category=WarningCategory.HARDCODED_ACCOUNT_ID,
                    template=template.name,
                    detail=f"account id {match.group(1)} in '{line.strip()}'; use the AWS::AccountId pseudo parameter",
                    line=line_no,
                )
            )
    return warnings


def scan_hardcoded_regions(template: TemplateDescriptor, known_regions: Sequence[str]) -> list[AdvisoryWarning]:
    if not known_regions:
        return []
    alternation = "|".join(re.escape(region) for region in sorted(set(known_regions), key=len, reverse=True))
    pattern = re.compile(rf"(?<![A-Za-z0-9-])({alternation})(?![A-Za-z0-9-])")
    warnings: list[AdvisoryWarning] = []
    for line_no, line in enumerate(template.body.splitlines(), start=1):
        if _REGION_EXEMPT_MARKER in line:
            continue
        for match in pattern.finditer(line):
            warnings.append(
                AdvisoryWarning(
                    category=WarningCategory.HARDCODED_REGION,
                    template=template.name,
                    detail=f"region {match.group(1)} in '{line.strip()}'; use the AWS::Region pseudo parameter",
                    line=line_no,
                )
            )
    return warnings


def scan_metadata(template: TemplateDescriptor) -> list[AdvisoryWarning]:
    document = _json_document(template.body)
    if document is not None:
        has_description = "Description" in document
        metadata = document.get("Metadata")
        has_metadata = isinstance(metadata, dict)
        has_interface = has_metadata and _INTERFACE_KEY in metadata
    else:
        has_description = bool(_DESCRIPTION_PATTERN.search(template.body))
        has_metadata = bool(_METADATA_PATTERN.search(template.body))
        has_interface = has_metadata and _INTERFACE_KEY in template.body

    warnings: list[AdvisoryWarning] = []
    if not has_description:
        warnings.append(
            AdvisoryWarning(
                category=WarningCategory.MISSING_DESCRIPTION,
                template=template.name,
                detail="template has no top-level Description",
            )
        )
    if not has_interface:
        detail = (
            f"Metadata block does not declare {_INTERFACE_KEY}"
            if has_metadata
            else f"template has no top-level Metadata; consider adding {_INTERFACE_KEY}"
        )
        warnings.append(
            AdvisoryWarning(
                category=WarningCategory.MISSING_INTERFACE_METADATA,
                template=template.name,
                detail=detail,
            )
        )
    return warnings


def discover_templates(root: Path) -> list[Path]:
    if not root.is_dir():
        raise ConfigurationError(f"templates directory not found: {root}")
    return sorted(path for path in root.rglob("*") if path.is_file() and path.suffix in _TEMPLATE_SUFFIXES)


class TemplateValidator:
    def __init__(
        self,
        control_plane: ControlPlane,
        *,
        known_regions: Sequence[str] | None = None,
        max_workers: int = 4,
    ) -> None:
        self.control_plane = control_plane
        self.known_regions = list(DEFAULT_KNOWN_REGIONS if known_regions is None else known_regions)
        self.max_workers = max(1, max_workers)

    def advisory_scan(self, template: TemplateDescriptor) -> tuple[AdvisoryWarning, ...]:
        warnings: list[AdvisoryWarning] = []
        warnings.extend(scan_hardcoded_accounts(template))
        warnings.extend(scan_hardcoded_regions(template, self.known_regions))
        warnings.extend(scan_metadata(template))
        return tuple(warnings)

    def validate(self, template: TemplateDescriptor) -> ValidationResult:
        logger.info("XAD: validating template (template=%s)", template.location)
        try:
            details = self.control_plane.validate_template(template.body)
        except RemoteUnavailable as exc:
            logger.warning(
                "XAD: remote validation unavailable (template=%s, code=%s)",
                template.location,
                exc.code,
            )
            return ValidationResult(
                template=template.location,
                is_valid=False,
                structural_errors=(
                    StructuralError(
                        location=template.location,
                        message=f"remote validation unavailable: {exc.code}: {exc.message}",
                    ),
                ),
                advisory_warnings=self.advisory_scan(template),
            )
        except RemoteRejected as exc:
            logger.error("XAD: template invalid (template=%s, error=%s)", template.location, exc.message)
            return ValidationResult(
                template=template.location,
                is_valid=False,
                structural_errors=(
                    StructuralError(
                        location=template.location,
                        message=exc.message or exc.code,
                        line=_line_from_message(exc.message),
                    ),
                ),
            )

        warnings = self.advisory_scan(template)
        for warning in warnings:
            logger.warning(
                "XAD: advisory %s (template=%s, line=%s): %s",
                warning.category.value,
                warning.template,
                warning.line,
                warning.detail,
            )
        logger.info("XAD: template valid (template=%s, warnings=%d)", template.location, len(warnings))
        return ValidationResult(
            template=template.location,
            is_valid=True,
            advisory_warnings=warnings,
            details=details or {},
        )

    def require(self, template: TemplateDescriptor) -> ValidationResult:
        """Validate and raise :class:`TemplateValidationError` when the template is invalid."""
        result = self.validate(template)
        if not result.is_valid:
            messages = "; ".join(error.message for error in result.structural_errors)
            raise TemplateValidationError(f"{template.location}: {messages}")
        return result

    def _validate_path(self, path: Path) -> ValidationResult:
        try:
            template = TemplateDescriptor.from_path(path)
        except (OSError, UnicodeDecodeError) as exc:
            return ValidationResult(
                template=str(path),
                is_valid=False,
                structural_errors=(StructuralError(location=str(path), message=f"unreadable template: {exc}"),),
            )
        return self.validate(template)

    def validate_batch(self, templates: Iterable[TemplateDescriptor | Path]) -> BatchValidationResult:
        items = list(templates)
        if not items:
            return BatchValidationResult(results=())

        def _run(item: TemplateDescriptor | Path) -> ValidationResult:
            if isinstance(item, Path):
                return self._validate_path(item)
            return self.validate(item)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            futures = [executor.submit(_run, item) for item in items]
            results: list[ValidationResult] = []
            auth_error: AuthenticationError | None = None
            for item, future in zip(items, futures):
                try:
                    results.append(future.result())
                except AuthenticationError as exc:
                    auth_error = auth_error or exc
                except Exception as exc:
                    location = str(item) if isinstance(item, Path) else item.location
                    logger.error("XAD: validation crashed (template=%s, error=%s)", location, exc)
                    results.append(
                        ValidationResult(
                            template=location,
                            is_valid=False,
                            structural_errors=(StructuralError(location=location, message=str(exc)),),
                        )
                    )
        if auth_error is not None:
            raise auth_error

        batch = BatchValidationResult(results=tuple(results))
        logger.info(
            "XAD: validation summary (valid=%d, invalid=%d, total=%d)",
            batch.valid_count,
            batch.invalid_count,
            len(batch.results),
        )
        return batch

    def validate_directory(self, root: Path) -> BatchValidationResult:
        paths = discover_templates(root)
        if not paths:
            logger.warning("XAD: no templates found (root=%s)", root)
        return self.validate_batch(paths)
