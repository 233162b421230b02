# config.py
# Runtime configuration. Values come from the environment, optionally seeded
# from a local .env file.

import os
import shlex

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from fluora_agent.errors import ConfigError

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3.5-sonnet"
DEFAULT_MCP_COMMAND = "npx"
DEFAULT_MCP_ARGS = "-y fluora-mcp@latest"
DEFAULT_SERVER_NAME = "PDFShift"
DEFAULT_TARGET_URL = "https://www.fluora.ai"
DEFAULT_PAYMENT_METHOD = "USDC_BASE_SEPOLIA"

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    mcp_command: str = DEFAULT_MCP_COMMAND
    mcp_args: list[str] = Field(default_factory=lambda: shlex.split(DEFAULT_MCP_ARGS))
    server_name: str = DEFAULT_SERVER_NAME
    target_url: str = DEFAULT_TARGET_URL
    payment_method: str = DEFAULT_PAYMENT_METHOD
    max_iterations: int = Field(default=8, ge=1)
    max_retries: int = Field(default=2, ge=0)
    strict: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Raises ConfigError when OPENROUTER_API_KEY is missing or a numeric
        variable does not parse.
        """
        if dotenv:
            load_dotenv()

        api_key = os.getenv("OPENROUTER_API_KEY", "").strip()
        if not api_key:
            raise ConfigError("OPENROUTER_API_KEY is not set.")

        try:
            max_iterations = int(os.getenv("FLUORA_MAX_ITERATIONS", "8"))
            max_retries = int(os.getenv("FLUORA_MAX_RETRIES", "2"))
        except ValueError as exc:
            raise ConfigError(f"Numeric setting is malformed: {exc}") from exc

        try:
            return cls(
                api_key=api_key,
                base_url=os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL),
                model=os.getenv("FLUORA_MODEL", DEFAULT_MODEL),
                mcp_command=os.getenv("FLUORA_MCP_COMMAND", DEFAULT_MCP_COMMAND),
                mcp_args=shlex.split(os.getenv("FLUORA_MCP_ARGS", DEFAULT_MCP_ARGS)),
                server_name=os.getenv("FLUORA_SERVER_NAME", DEFAULT_SERVER_NAME),
                target_url=os.getenv("FLUORA_TARGET_URL", DEFAULT_TARGET_URL),
                payment_method=os.getenv("FLUORA_PAYMENT_METHOD", DEFAULT_PAYMENT_METHOD),
                max_iterations=max_iterations,
                max_retries=max_retries,
                strict=os.getenv("FLUORA_STRICT", "false").strip().lower() in _TRUTHY,
                log_level=os.getenv("FLUORA_LOG_LEVEL", "WARNING").upper(),
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
