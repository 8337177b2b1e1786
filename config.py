"""Project configuration, read from the environment (and a local .env file)."""

import os
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from common.errors import AgentError, ErrorComponent, ErrorKind


class MCPConfig(BaseModel):
    """Tool server connection settings."""

    transport: Literal["stdio", "http"] = "stdio"
    # stdio mode
    server_command: str = "node"
    server_path: Optional[str] = None
    mdm_url: Optional[str] = None
    mdm_client_id: Optional[str] = None
    mdm_client_secret: Optional[str] = None
    # http mode
    server_url: Optional[str] = None
    # timeouts & reconnection
    connect_timeout_ms: int = Field(30_000, gt=0)
    tool_timeout_ms: int = Field(120_000, gt=0)
    max_reconnect_attempts: int = Field(5, ge=0)
    reconnect_base_ms: int = Field(1_000, gt=0)

    @model_validator(mode="after")
    def _check_transport(self) -> "MCPConfig":
        if self.transport == "stdio":
            missing = [
                env_name
                for env_name, value in (
                    ("MCP_SERVER_PATH", self.server_path),
                    ("MDM_URL", self.mdm_url),
                    ("MDM_CLIENT_ID", self.mdm_client_id),
                    ("MDM_CLIENT_SECRET", self.mdm_client_secret),
                )
                if not value
            ]
            if missing:
                raise ValueError(f"{', '.join(missing)} required in stdio mode")
        elif not self.server_url:
            raise ValueError("MCP_SERVER_URL is required in http mode")
        return self


class LLMConfig(BaseModel):
    """Reasoning backend settings."""

    provider: Literal["anthropic", "bedrock"] = "anthropic"
    api_key: Optional[str] = None
    aws_region: str = "us-east-1"
    model: Optional[str] = None
    max_tool_rounds: int = Field(15, gt=0)
    request_timeout_ms: int = Field(120_000, gt=0)
    max_tokens: int = Field(8192, gt=0)


class AppConfig(BaseModel):
    """Complete application configuration."""

    mcp: MCPConfig
    llm: LLMConfig = Field(default_factory=LLMConfig)
    log_level: str = "INFO"


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    # Empty strings count as unset; pydantic coerces the rest
    return env.get(name) or None


def _build_env_map(env: Mapping[str, str]) -> dict:
    raw = {
        "mcp": {
            "transport": env.get("MCP_TRANSPORT"),
            "server_command": env.get("MCP_SERVER_COMMAND"),
            "server_path": env.get("MCP_SERVER_PATH") or None,
            "mdm_url": env.get("MDM_URL") or None,
            "mdm_client_id": env.get("MDM_CLIENT_ID") or None,
            "mdm_client_secret": env.get("MDM_CLIENT_SECRET") or None,
            "server_url": env.get("MCP_SERVER_URL") or None,
            "connect_timeout_ms": _optional(env, "MCP_CONNECT_TIMEOUT_MS"),
            "tool_timeout_ms": _optional(env, "MCP_TOOL_TIMEOUT_MS"),
            "max_reconnect_attempts": _optional(env, "MCP_MAX_RECONNECT_ATTEMPTS"),
            "reconnect_base_ms": _optional(env, "MCP_RECONNECT_BASE_MS"),
        },
        "llm": {
            "provider": env.get("LLM_PROVIDER"),
            "api_key": env.get("ANTHROPIC_API_KEY") or None,
            "aws_region": env.get("AWS_REGION"),
            "model": env.get("LLM_MODEL") or None,
            "max_tool_rounds": _optional(env, "LLM_MAX_TOOL_ROUNDS"),
            "request_timeout_ms": _optional(env, "LLM_REQUEST_TIMEOUT_MS"),
            "max_tokens": _optional(env, "LLM_MAX_TOKENS"),
        },
        "log_level": env.get("LOG_LEVEL"),
    }
    # Drop unset values so model defaults apply
    return {
        key: ({k: v for k, v in value.items() if v is not None} if isinstance(value, dict) else value)
        for key, value in raw.items()
        if value is not None
    }


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load and validate configuration.

    Args:
        env: Mapping to read instead of the process environment. When omitted,
            a .env file in the working directory is loaded first.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    try:
        return AppConfig.model_validate(_build_env_map(env))
    except ValidationError as e:
        raise AgentError(
            f"Invalid configuration: {e.error_count()} error(s)",
            kind=ErrorKind.CONFIG,
            component=ErrorComponent.CONFIG,
            operation="load",
            context={"errors": [err["msg"] for err in e.errors()]},
        ) from e
