# agent.py
# Reason-act-observe loop around an OpenAI-compatible chat model.
#
# The model decides whether and which tools to call; the driver only executes
# what it asks for, one call at a time, through the transport. Nothing here
# can force a particular tool to be used. The sequencer only ever sees the
# Agent protocol, so tests can drop in a deterministic stub.

import json
import logging
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from fluora_agent import display
from fluora_agent.config import Settings
from fluora_agent.errors import InvocationError, ModelError
from fluora_agent.models import AgentReply, Capability, ToolCallRecord

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a helpful assistant that can help with tasks. You have access to the following tools: \
searchFluora, listTools, callServerTool. You are given a task and you need to complete it \
using the tools. You need to return the tool response as JSON, no explanations. \
You have to use the mcp tools to complete the task.\
"""


class Agent(Protocol):
    async def invoke(self, instruction: str, context: list[dict[str, str]]) -> AgentReply: ...


class ToolInvoker(Protocol):
    async def invoke(self, name: str, args: dict[str, Any]) -> str: ...


class AgentDriver:
    """
    Binds a chat model to the capabilities discovered on the MCP server.

    Example:
        driver = AgentDriver.from_settings(settings, transport, capabilities)
        reply = await driver.invoke("Search servers on fluora", context=[])
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        transport: ToolInvoker,
        capabilities: list[Capability],
        system_prompt: str = SYSTEM_PROMPT,
        max_iterations: int = 8,
    ) -> None:
        self._client = client
        self._model = model
        self._transport = transport
        self._tools = [capability.to_openai_tool() for capability in capabilities]
        self._system_prompt = system_prompt
        self._max_iterations = max_iterations

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: ToolInvoker,
        capabilities: list[Capability],
    ) -> "AgentDriver":
        client = AsyncOpenAI(
            base_url=settings.base_url,
            api_key=settings.api_key,
            max_retries=settings.max_retries,
        )
        return cls(
            client,
            settings.model,
            transport,
            capabilities,
            max_iterations=settings.max_iterations,
        )

    # ------------------------------------------------------------------
    # Low-level calls
    # ------------------------------------------------------------------

    async def _call_model(self, messages: list[dict[str, Any]]) -> Any:
        kwargs: dict[str, Any] = {"model": self._model, "messages": messages}
        if self._tools:
            kwargs["tools"] = self._tools
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIError as exc:
            raise ModelError(f"Model call failed: {exc}") from exc
        # OpenRouter can answer 200 with an error body and no choices.
        try:
            return response.choices[0].message
        except (AttributeError, IndexError, TypeError) as exc:
            raise ModelError(f"Model returned no choices: {response!r}") from exc

    async def _run_tool(self, call: Any) -> tuple[ToolCallRecord, dict[str, Any]]:
        """Execute one requested tool call. InvocationError becomes an observation."""
        name = call.function.name
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError as exc:
            record = ToolCallRecord(tool=name, error=f"Invalid JSON arguments: {exc}")
            display.tool_error(name, record.error)
            return record, {"role": "tool", "tool_call_id": call.id, "content": f"ERROR: {record.error}"}

        if not isinstance(arguments, dict):
            arguments = {}

        display.tool_call(name, arguments)
        record = ToolCallRecord(tool=name, arguments=arguments)
        try:
            record.result = await self._transport.invoke(name, arguments)
            content = record.result
            display.tool_result(record.result)
        except InvocationError as exc:
            record.error = exc.message
            content = json.dumps({"error": exc.message})
            display.tool_error(name, exc.message)

        return record, {"role": "tool", "tool_call_id": call.id, "content": content}

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def invoke(self, instruction: str, context: list[dict[str, str]]) -> AgentReply:
        """
        Run the loop until the model answers without tool calls.

        Returns the final assistant text, the messages generated during the
        loop, and a record of every tool call. When the model produces no
        text at all, the last successful tool result stands in for it.
        TransportConnectionError and ModelError propagate.
        """
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self._system_prompt},
            *context,
            {"role": "user", "content": instruction},
        ]
        start = len(messages)
        records: list[ToolCallRecord] = []
        final = ""

        for _ in range(self._max_iterations):
            message = await self._call_model(messages)
            if message.content:
                final = message.content.strip()

            if not message.tool_calls:
                messages.append({"role": "assistant", "content": message.content or ""})
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.function.name,
                                "arguments": call.function.arguments,
                            },
                        }
                        for call in message.tool_calls
                    ],
                }
            )
            for call in message.tool_calls:
                record, tool_message = await self._run_tool(call)
                records.append(record)
                messages.append(tool_message)
        else:
            logger.warning("Agent loop hit max_iterations=%d without a final answer.", self._max_iterations)

        if not final:
            final = next((r.result for r in reversed(records) if r.error is None and r.result), "")

        return AgentReply(final_message=final, transcript=messages[start:], tool_calls=records)
