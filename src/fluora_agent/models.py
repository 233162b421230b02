# models.py
# Data contracts for the Fluora purchase workflow.
# No business logic lives here. Pure schema and validation.

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class StageId(str, Enum):
    """Workflow stages, declared in execution order."""

    DISCOVERY = "Discovery"
    TOOL_LISTING = "ToolListing"
    PRICING = "Pricing"
    PAYMENT_METHODS = "PaymentMethods"
    PURCHASE = "Purchase"

    @property
    def position(self) -> int:
        return list(StageId).index(self)


class StepResult(BaseModel):
    """Notable output of one stage. Immutable once recorded in the ledger."""

    model_config = ConfigDict(frozen=True)

    stage: StageId
    role: Literal["user", "assistant", "system"] = "user"
    content: str
    label: str = Field(default="", description="Carry-forward tag, e.g. 'List servers response'.")

    def as_message(self) -> dict[str, str]:
        text = f"{self.label}: {self.content}" if self.label else self.content
        return {"role": self.role, "content": text}


class Capability(BaseModel):
    """A tool advertised by the MCP server."""

    name: str
    description: str = ""
    argument_schema: dict[str, Any] = Field(default_factory=dict)

    def to_openai_tool(self) -> dict[str, Any]:
        parameters = dict(self.argument_schema or {})
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ToolCallRecord(BaseModel):
    """One tool invocation issued from inside the agent loop."""

    tool: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str = ""
    error: str | None = None


class AgentReply(BaseModel):
    """Final message of one agent invocation plus everything it did on the way."""

    final_message: str
    transcript: list[dict[str, Any]] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)


class ToolDirective(BaseModel):
    """A concrete tool call the sequencer asks the agent to make."""

    tool: str
    arguments: dict[str, Any] = Field(default_factory=dict)
