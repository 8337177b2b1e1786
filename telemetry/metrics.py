"""Metric side channel for the MCP client and the agent loop.

Recording goes through the OpenTelemetry metrics API, which only aggregates
in memory; exporting happens on the SDK's reader thread. A failure while
recording is logged and dropped so it can never change control flow.
"""

import logging
from typing import Any, Callable, Optional

from opentelemetry import metrics

from common.context import get_job_type

logger = logging.getLogger(__name__)

METER_NAME = "fleet_agent"

_instruments: dict[str, Any] = {}


def _instrument(name: str, factory: Callable[[metrics.Meter], Any]) -> Any:
    if name not in _instruments:
        _instruments[name] = factory(metrics.get_meter(METER_NAME))
    return _instruments[name]


def _attributes(extra: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    attrs: dict[str, Any] = {}
    job_type = get_job_type()
    if job_type:
        attrs["job_type"] = job_type
    if extra:
        attrs.update(extra)
    return attrs


def _safely(record: Callable[[], None], metric: str) -> None:
    try:
        record()
    except Exception as e:
        logger.debug(f"Dropping metric {metric}: {e}")


def record_mcp_connect_duration(duration_ms: float) -> None:
    """Record how long the MCP handshake took."""

    def record() -> None:
        histogram = _instrument(
            "mcp.connect.duration",
            lambda m: m.create_histogram("mcp.connect.duration", unit="ms"),
        )
        histogram.record(duration_ms, _attributes())

    _safely(record, "mcp.connect.duration")


def record_mcp_tool_call(tool_name: str, duration_ms: float, error: bool) -> None:
    """Record a single MCP tool call."""

    def record() -> None:
        attrs = _attributes({"tool_name": tool_name})
        histogram = _instrument(
            "mcp.tool_call.duration",
            lambda m: m.create_histogram("mcp.tool_call.duration", unit="ms"),
        )
        histogram.record(duration_ms, attrs)
        if error:
            errors = _instrument(
                "mcp.tool_call.errors",
                lambda m: m.create_counter("mcp.tool_call.errors"),
            )
            errors.add(1, attrs)

    _safely(record, "mcp.tool_call")


def record_agent_run(duration_ms: float, tool_calls: int, rounds: int, total_tokens: int) -> None:
    """Record the totals of one agent run."""

    def record() -> None:
        attrs = _attributes()
        _instrument(
            "agent.run.duration",
            lambda m: m.create_histogram("agent.run.duration", unit="ms"),
        ).record(duration_ms, attrs)
        _instrument(
            "agent.run.tool_calls",
            lambda m: m.create_histogram("agent.run.tool_calls"),
        ).record(tool_calls, attrs)
        _instrument(
            "agent.run.rounds",
            lambda m: m.create_histogram("agent.run.rounds"),
        ).record(rounds, attrs)
        _instrument(
            "agent.run.tokens",
            lambda m: m.create_counter("agent.run.tokens"),
        ).add(total_tokens, attrs)

    _safely(record, "agent.run")
