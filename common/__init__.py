"""Common shared modules across the fleet agent."""

from .errors import AgentError, ErrorComponent, ErrorKind, format_error_chain, is_kind
from .report import (
    AgentReport,
    OverallStatus,
    RemediationReport,
    extract_json_object,
    parse_remediation_report,
    parse_report,
)

__all__ = [
    # Errors
    "AgentError",
    "ErrorKind",
    "ErrorComponent",
    "is_kind",
    "format_error_chain",
    # Reports
    "AgentReport",
    "OverallStatus",
    "RemediationReport",
    "extract_json_object",
    "parse_report",
    "parse_remediation_report",
]
