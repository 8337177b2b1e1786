#!/usr/bin/env python3
"""Command-line entry point for the fleet operator agent."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Union

from agents.operator_agent import AgentOptions, AgentResult, OperatorAgent, RemediationResult
from agents.prompts import (
    ReportType,
    build_remediation_user_message,
    get_remediation_prompt,
    get_system_prompt,
    get_user_message,
)
from client.anthropic_client import AnthropicClient
from client.mcp_client import MCPClient, build_mcp_options
from common.context import RunContextFilter
from common.errors import format_error_chain
from common.report import AgentReport, parse_report
from config import AppConfig, load_config
from telemetry import init_telemetry

logger = logging.getLogger(__name__)

REPORT_COMMANDS = [ReportType.COMPLIANCE.value, ReportType.SECURITY.value, ReportType.FLEET.value]


def configure_logging(level: str) -> None:
    """Log to stderr so report output on stdout stays machine-readable."""
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] %(message)s",
        handlers=[handler],
    )
    # The MCP SDK and HTTP stack are chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("mcp").setLevel(logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-agent",
        description="Fleet operator agent - proactive device fleet monitoring & reporting",
    )
    parser.add_argument(
        "--progress",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Show round progress on stderr (default: when stderr is a terminal)",
    )
    parser.add_argument(
        "--telemetry-console", action="store_true", help="Print spans and metrics to stdout"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Run a report: compliance, security, or fleet")
    check.add_argument("type", choices=REPORT_COMMANDS)

    ask = subparsers.add_parser("ask", help="Ask an ad-hoc question about the fleet")
    ask.add_argument("question")

    remediate = subparsers.add_parser(
        "remediate", help="Fix the findings of a report (dry run unless --live)"
    )
    remediate.add_argument("type", nargs="?", choices=REPORT_COMMANDS)
    remediate.add_argument("--file", help="Remediate a saved report instead of running one")
    remediate.add_argument(
        "--live", action="store_true", help="Apply changes with write tools instead of planning"
    )

    return parser


def build_agent(config: AppConfig, mcp: MCPClient, progress: bool) -> OperatorAgent:
    backend = AnthropicClient(
        api_key=config.llm.api_key,
        default_model=config.llm.model,
        provider=config.llm.provider,
        aws_region=config.llm.aws_region,
    )
    options = AgentOptions(
        model=config.llm.model,
        max_tool_rounds=config.llm.max_tool_rounds,
        request_timeout_ms=config.llm.request_timeout_ms,
        max_tokens=config.llm.max_tokens,
        progress=progress,
    )
    return OperatorAgent(mcp, backend, options)


def progress_enabled(flag: Optional[bool]) -> bool:
    """Explicit --progress/--no-progress wins; otherwise follow the terminal."""
    if flag is not None:
        return flag
    return sys.stderr.isatty()


def render_result(result: Union[AgentResult, RemediationResult]) -> str:
    """Report JSON when one was extracted, otherwise the raw text."""
    if result.report is not None:
        return json.dumps(result.report.model_dump(mode="json", by_alias=True), indent=2)
    return result.raw_text


async def obtain_report(args: argparse.Namespace, agent: OperatorAgent) -> Optional[AgentReport]:
    """Load the report to remediate from --file, or produce it with a fresh run."""
    if args.file:
        report = parse_report(Path(args.file).read_text())
        if report is None:
            print(f"No valid report found in {args.file}", file=sys.stderr)
        return report

    report_type = ReportType(args.type)
    result = await agent.run(
        get_system_prompt(report_type),
        get_user_message(report_type),
        job_type=report_type.value,
    )
    if result.report is None:
        print("The report run did not produce a structured report:", file=sys.stderr)
        print(result.raw_text, file=sys.stderr)
    return result.report


async def remediate(args: argparse.Namespace, agent: OperatorAgent) -> int:
    report = await obtain_report(args, agent)
    if report is None:
        return 1
    if not report.findings:
        print("No findings to remediate")
        return 0

    dry_run = not args.live
    # Write tools are only exposed when changes will actually be applied
    remediation_agent = OperatorAgent(
        agent.mcp_client,
        agent.backend,
        agent.options.model_copy(update={"include_write_tools": not dry_run}),
    )
    result = await remediation_agent.run_remediation(
        get_remediation_prompt(dry_run),
        build_remediation_user_message(report.findings, dry_run),
    )
    print(render_result(result))
    logger.info(
        f"Remediation {'plan' if dry_run else 'run'} complete: "
        f"{result.tool_call_count} tool call(s) over {result.rounds} round(s)"
    )
    return 0


async def run_command(args: argparse.Namespace, config: AppConfig) -> int:
    mcp = MCPClient(build_mcp_options(config.mcp))
    await mcp.connect()
    agent = build_agent(config, mcp, progress_enabled(args.progress))
    try:
        if args.command == "remediate":
            return await remediate(args, agent)
        if args.command == "check":
            report_type = ReportType(args.type)
            result = await agent.run(
                get_system_prompt(report_type),
                get_user_message(report_type),
                job_type=report_type.value,
            )
        else:
            result = await agent.run(
                get_system_prompt(ReportType.ADHOC),
                get_user_message(ReportType.ADHOC, args.question),
                job_type=ReportType.ADHOC.value,
            )
    finally:
        await agent.backend.close()
        await mcp.disconnect()

    print(render_result(result))
    logger.info(
        f"Run complete: {result.rounds} round(s), {result.tool_call_count} tool call(s), "
        f"{result.token_usage.total_tokens} tokens"
    )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, run the command and return the exit code."""
    args = build_parser().parse_args(argv)
    if args.command == "remediate" and not (args.type or args.file):
        print("Provide a report type or --file", file=sys.stderr)
        return 1

    try:
        config = load_config()
    except Exception as e:
        print(format_error_chain(e), file=sys.stderr)
        return 1

    configure_logging(config.log_level)
    init_telemetry(enable_console=args.telemetry_console)

    try:
        return asyncio.run(run_command(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as e:
        logger.error(f"Run failed: {e}")
        print(format_error_chain(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
