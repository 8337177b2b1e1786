"""Fleet agents - tool-using operator agent over the MCP server."""

from agents.operator_agent import AgentOptions, AgentResult, OperatorAgent, RemediationResult

__all__ = ["OperatorAgent", "AgentOptions", "AgentResult", "RemediationResult"]
