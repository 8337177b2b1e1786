"""Operator agent - drives Claude through tool-calling rounds against the MCP server.

One run:
    1. Start a conversation with the task message
    2. Send it to the backend with the filtered tool catalog
    3. If the model asks for tools, call them one by one through MCPClient
       and append the results
    4. Repeat until the model answers or the round budget runs out
    5. Extract a structured report from the final text
"""

import asyncio
import json
import logging
import re
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

from mcp.types import CallToolResult
from opentelemetry import trace
from pydantic import BaseModel, Field

from client.base_provider_client import BaseProviderClient
from client.mcp_client import MCPClient, is_transport_error
from client.timeouts import with_timeout
from client.types import (
    Conversation,
    ConverseResponse,
    LLMMessageRole,
    LLMTokenUsage,
    ToolResultBlock,
    ToolUseBlock,
)
from common.context import run_context
from common.errors import AgentError, ErrorComponent, ErrorKind
from common.report import (
    AgentReport,
    RemediationReport,
    parse_remediation_report,
    parse_report,
)
from telemetry.metrics import record_agent_run
from tools.catalog import map_tools

from .prompts import PROMPT_VERSION

logger = logging.getLogger(__name__)

RATE_LIMIT_PATTERN = re.compile(r"too many connections|rate limit|throttl", re.IGNORECASE)

# Client errors after which no further tool call can succeed in this run
FATAL_TOOL_ERRORS = frozenset({ErrorKind.RECONNECT_EXHAUSTED, ErrorKind.NOT_CONNECTED})

R = TypeVar("R", bound=BaseModel)


def is_rate_limited(error: BaseException) -> bool:
    """Whether an error (or its direct cause) looks like throttling."""
    if RATE_LIMIT_PATTERN.search(str(error)):
        return True
    cause = error.__cause__
    return cause is not None and bool(RATE_LIMIT_PATTERN.search(str(cause)))


class AgentOptions(BaseModel):
    """Knobs for one agent instance."""

    model: Optional[str] = None
    max_tool_rounds: int = Field(15, gt=0)
    include_write_tools: bool = False
    request_timeout_ms: int = Field(120_000, gt=0)
    max_tokens: int = Field(8192, gt=0)
    retry_attempts: int = Field(3, gt=0)
    retry_base_ms: int = Field(2_000, ge=0)
    tool_call_delay_ms: int = Field(500, ge=0)
    progress: bool = False


@dataclass
class RunResult(Generic[R]):
    """Outcome of one run. ``report`` is None when the text held no valid report."""

    report: Optional[R]
    raw_text: str
    tool_call_count: int
    rounds: int
    token_usage: LLMTokenUsage = field(default_factory=LLMTokenUsage)


AgentResult = RunResult[AgentReport]
RemediationResult = RunResult[RemediationReport]


@dataclass
class _ToolOutcome:
    text: str
    is_error: bool


@dataclass
class _RunState:
    conversation: Conversation
    rounds: int = 0
    tool_call_count: int = 0
    token_usage: LLMTokenUsage = field(default_factory=LLMTokenUsage)


class OperatorAgent:
    """Multi-round tool-using agent over a single MCP connection.

    The agent only reads the client's catalog; connection state belongs to
    the client. Runs sharing one client must be serialized by the caller.
    """

    def __init__(
        self,
        mcp_client: MCPClient,
        backend: BaseProviderClient,
        options: Optional[AgentOptions] = None,
    ):
        self.mcp_client = mcp_client
        self.backend = backend
        self.options = options or AgentOptions()
        self.tracer = trace.get_tracer(__name__)

    async def run(
        self, system_prompt: str, user_message: str, job_type: Optional[str] = None
    ) -> AgentResult:
        """Run the loop and extract an AgentReport from the final text."""
        return await self._run(system_prompt, user_message, parse_report, job_type)

    async def run_remediation(
        self, system_prompt: str, user_message: str, job_type: Optional[str] = "remediation"
    ) -> RemediationResult:
        """Run the loop and extract a RemediationReport from the final text."""
        return await self._run(system_prompt, user_message, parse_remediation_report, job_type)

    async def _run(
        self,
        system_prompt: str,
        user_message: str,
        parse: Callable[[str], Optional[R]],
        job_type: Optional[str],
    ) -> RunResult[R]:
        with run_context(job_type) as ctx:
            with self.tracer.start_as_current_span("agent.run") as span:
                span.set_attribute("agent.run_id", ctx.run_id)
                span.set_attribute("agent.max_rounds", self.options.max_tool_rounds)

                start = time.monotonic()
                state = _RunState(conversation=Conversation())
                try:
                    raw_text = await self._execute_loop(system_prompt, user_message, state)
                finally:
                    self._clear_progress()

                span.set_attribute("agent.rounds", state.rounds)
                span.set_attribute("agent.tool_calls", state.tool_call_count)
                span.set_attribute("agent.total_tokens", state.token_usage.total_tokens)
                record_agent_run(
                    (time.monotonic() - start) * 1000,
                    state.tool_call_count,
                    state.rounds,
                    state.token_usage.total_tokens,
                )

                return RunResult(
                    report=parse(raw_text),
                    raw_text=raw_text,
                    tool_call_count=state.tool_call_count,
                    rounds=state.rounds,
                    token_usage=state.token_usage,
                )

    async def _execute_loop(self, system_prompt: str, user_message: str, state: _RunState) -> str:
        tools = map_tools(self.mcp_client.get_tools(), self.options.include_write_tools)
        logger.info(f"Agent starting - {len(tools)} tools available, prompt v{PROMPT_VERSION}")

        state.conversation.add_user_text(user_message)
        max_rounds = self.options.max_tool_rounds

        while state.rounds < max_rounds:
            state.rounds += 1
            logger.info(f"Round {state.rounds}/{max_rounds}")
            self._report_progress(state)

            raw_text = await self._execute_round_with_retry(system_prompt, tools, state)
            if raw_text is not None:
                logger.info(
                    f"Agent finished after {state.rounds} round(s), "
                    f"{state.tool_call_count} tool call(s), "
                    f"{state.token_usage.total_tokens} tokens"
                )
                return raw_text

        logger.warning(f"Agent hit max rounds ({max_rounds})")
        return state.conversation.last_assistant_text()

    async def _execute_round_with_retry(
        self, system_prompt: str, tools: list[dict[str, Any]], state: _RunState
    ) -> Optional[str]:
        attempts = self.options.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._execute_round(system_prompt, tools, state)
            except Exception as e:
                if is_rate_limited(e) and attempt < attempts:
                    delay_ms = self._backoff_ms(attempt)
                    logger.warning(
                        f"Rate limited (attempt {attempt}/{attempts}), "
                        f"retrying round in {delay_ms}ms..."
                    )
                    await asyncio.sleep(delay_ms / 1000)
                    continue
                raise
        return None

    async def _execute_round(
        self, system_prompt: str, tools: list[dict[str, Any]], state: _RunState
    ) -> Optional[str]:
        """Run one round. Returns the final text when the round is terminal."""
        with self.tracer.start_as_current_span("agent.round") as span:
            span.set_attribute("agent.round", state.rounds)

            response = await self._converse(system_prompt, tools, state)
            if response.usage:
                state.token_usage.add(response.usage)

            state.conversation.append(LLMMessageRole.ASSISTANT, response.content)

            tool_uses = response.tool_uses
            span.set_attribute("agent.tool_use_count", len(tool_uses))
            if response.stop_reason == "end_turn" or not tool_uses:
                return response.text

            results: list[ToolResultBlock] = []
            for i, tool_use in enumerate(tool_uses):
                if i > 0 and self.options.tool_call_delay_ms:
                    await asyncio.sleep(self.options.tool_call_delay_ms / 1000)

                state.tool_call_count += 1
                logger.info(f"  Tool call: {tool_use.name}")
                outcome = await self._call_tool_with_retry(tool_use)
                results.append(
                    ToolResultBlock(
                        tool_use_id=tool_use.id, content=outcome.text, is_error=outcome.is_error
                    )
                )

            state.conversation.append(LLMMessageRole.USER, results)
            return None

    async def _converse(
        self, system_prompt: str, tools: list[dict[str, Any]], state: _RunState
    ) -> ConverseResponse:
        return await with_timeout(
            self.backend.converse(
                system=system_prompt,
                messages=state.conversation.messages,
                tools=tools,
                max_tokens=self.options.max_tokens,
                model=self.options.model,
            ),
            self.options.request_timeout_ms,
            "llm.converse",
            ErrorComponent.LLM,
        )

    async def _call_tool_with_retry(self, tool_use: ToolUseBlock) -> _ToolOutcome:
        name = tool_use.name
        attempts = self.options.retry_attempts

        with self.tracer.start_as_current_span("mcp.tool_call") as span:
            span.set_attribute("tool.name", name)
            for attempt in range(1, attempts + 1):
                span.set_attribute("tool.attempts", attempt)
                try:
                    result = await self.mcp_client.call_tool(name, tool_use.input)
                except AgentError as e:
                    if e.kind in FATAL_TOOL_ERRORS:
                        logger.error(f"  Tool error: {name} - {e.message} (aborting run)")
                        raise
                    if self._should_retry(e, attempt, name):
                        await asyncio.sleep(self._backoff_ms(attempt) / 1000)
                        continue
                    return self._error_outcome(name, e)
                except Exception as e:
                    if self._should_retry(e, attempt, name):
                        await asyncio.sleep(self._backoff_ms(attempt) / 1000)
                        continue
                    return self._error_outcome(name, e)

                text = _tool_result_text(result)
                is_error = bool(result.isError)
                if is_error and RATE_LIMIT_PATTERN.search(text) and attempt < attempts:
                    delay_ms = self._backoff_ms(attempt)
                    logger.warning(
                        f"  Rate limited on {name} (attempt {attempt}/{attempts}), "
                        f"retrying in {delay_ms}ms..."
                    )
                    await asyncio.sleep(delay_ms / 1000)
                    continue

                span.set_attribute("tool.is_error", is_error)
                return _ToolOutcome(text=text, is_error=is_error)

        return _ToolOutcome(text="Error: max retries exceeded", is_error=True)

    def _should_retry(self, error: Exception, attempt: int, name: str) -> bool:
        attempts = self.options.retry_attempts
        if attempt >= attempts:
            return False
        if not (is_rate_limited(error) or is_transport_error(error)):
            return False
        logger.warning(
            f"  Retryable error on {name} (attempt {attempt}/{attempts}), "
            f"retrying in {self._backoff_ms(attempt)}ms: {error}"
        )
        return True

    def _error_outcome(self, name: str, error: Exception) -> _ToolOutcome:
        logger.error(f"  Tool error: {name} - {error}")
        return _ToolOutcome(text=f"Error: {error}", is_error=True)

    def _backoff_ms(self, attempt: int) -> int:
        return self.options.retry_base_ms * 2 ** (attempt - 1)

    def _report_progress(self, state: _RunState) -> None:
        if not self.options.progress:
            return
        sys.stderr.write(
            f"\r  Round {state.rounds}/{self.options.max_tool_rounds} | "
            f"{state.tool_call_count} tool call(s) | {state.token_usage.total_tokens} tokens"
        )
        sys.stderr.flush()

    def _clear_progress(self) -> None:
        if self.options.progress:
            sys.stderr.write("\r\x1b[K")
            sys.stderr.flush()


def _tool_result_text(result: CallToolResult) -> str:
    parts = []
    for item in result.content:
        if getattr(item, "type", None) == "text":
            parts.append(item.text)  # type: ignore[union-attr]
        else:
            parts.append(json.dumps(item.model_dump(mode="json")))
    return "\n".join(parts)
