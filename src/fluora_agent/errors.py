# errors.py
# Exception hierarchy for the Fluora purchase workflow.
#
# Every failure the sequencer can surface derives from FluoraAgentError so the
# entry point has exactly one thing to catch.

from fluora_agent.models import StageId


class FluoraAgentError(Exception):
    """Base class for all workflow failures."""


class ConfigError(FluoraAgentError):
    """Raised when required configuration is missing or malformed."""


class TransportConnectionError(FluoraAgentError):
    """Raised when the MCP server cannot be spawned, initialized, or reached. Always fatal."""


class ModelError(FluoraAgentError):
    """Raised when the language model call fails after the client's own retries."""


class InvocationError(FluoraAgentError):
    """Raised when a single tool call is rejected or fails on the remote side."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"Tool '{tool}' failed: {message}")
        self.tool = tool
        self.message = message


class ExtractionFailure(FluoraAgentError):
    """Raised when a required binding cannot be recovered from an earlier stage."""

    def __init__(self, field: str, stage: StageId, reason: str = "not found") -> None:
        super().__init__(f"Could not resolve '{field}' from the {stage.value} result: {reason}")
        self.field = field
        self.stage = stage
