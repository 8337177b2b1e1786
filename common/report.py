"""Structured report models and best-effort extraction from assistant text.

The model is asked to finish with a single JSON object. Extraction never
raises: text that does not contain a valid report yields ``None`` and the raw
text stays the authoritative output.
"""

import json
import logging
import re
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class OverallStatus(str, Enum):
    """Fleet-level verdict of a report."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class _LenientModel(BaseModel):
    """Report detail whose unusable field values fall back to their defaults."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_error(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            assert info.field_name is not None
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)


class AffectedDevice(_LenientModel):
    """A device called out by a finding."""

    name: str = ""
    id: str = ""
    detail: str = ""


class Remediation(_LenientModel):
    """Suggested fix for a finding."""

    title: str = ""
    steps: list[str] = Field(default_factory=list)
    effort: str = ""
    automatable: bool = False


class Finding(_LenientModel):
    """Single issue found during the run."""

    title: str = ""
    severity: str = ""
    category: str = ""
    description: str = ""
    affected_device_count: int = Field(0, alias="affectedDeviceCount")
    affected_devices: list[AffectedDevice] = Field(
        default_factory=list, alias="affectedDevices"
    )
    remediation: Optional[Remediation] = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_text(cls, data: Any) -> Any:
        # Models occasionally list findings as plain strings
        if isinstance(data, dict):
            return data
        return {"title": str(data)}


class AgentReport(BaseModel):
    """Report produced by a compliance, security, fleet or ad-hoc run."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    summary: str = Field(..., min_length=1)
    overall_status: OverallStatus = Field(..., alias="overallStatus")
    findings: list[Finding]
    metrics: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metrics", mode="before")
    @classmethod
    def _null_metrics(cls, value: Any) -> Any:
        return {} if value is None else value


class ActionStatus(str, Enum):
    """Outcome of a single remediation action."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RemediationAction(BaseModel):
    """One write operation attempted during a remediation run."""

    model_config = ConfigDict(extra="allow")

    status: ActionStatus
    error: Optional[str] = None


class RemediationReport(BaseModel):
    """Report produced by a remediation run."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    summary: str = Field(..., min_length=1)
    findings_attempted: int = Field(..., alias="findingsAttempted")
    findings_succeeded: Optional[int] = Field(None, alias="findingsSucceeded")
    actions: list[RemediationAction]


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """Pull the outermost JSON object out of free-form text.

    Strips the first fenced code block if present, then parses the span from
    the first ``{`` to the last ``}``.
    """
    if not text or not text.strip():
        return None

    candidate = text
    fence = _FENCE_PATTERN.search(text)
    if fence:
        candidate = fence.group(1)

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None

    try:
        parsed = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as e:
        logger.debug(f"Report JSON did not parse: {e}")
        return None

    return parsed if isinstance(parsed, dict) else None


def parse_report(text: str) -> Optional[AgentReport]:
    """Extract an AgentReport, or None when the text does not hold one."""
    data = extract_json_object(text)
    if data is None:
        return None
    try:
        return AgentReport.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Report failed validation: {e.error_count()} error(s)")
        return None


def parse_remediation_report(text: str) -> Optional[RemediationReport]:
    """Extract a RemediationReport, or None when the text does not hold one."""
    data = extract_json_object(text)
    if data is None:
        return None

    # Models sometimes attach an "error" to actions that did not fail
    actions = data.get("actions")
    if isinstance(actions, list):
        for action in actions:
            if isinstance(action, dict) and action.get("status") in ("success", "skipped"):
                action.pop("error", None)

    try:
        return RemediationReport.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Remediation report failed validation: {e.error_count()} error(s)")
        return None
