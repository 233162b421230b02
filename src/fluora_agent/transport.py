# transport.py
# Stdio connection to the Fluora MCP server.
#
# The transport owns the subprocess and the MCP session. It knows nothing
# about stages or models: it lists capabilities and invokes tools by name.
# Every invoke is a single round trip. No caching, no batching, no reconnect.

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import anyio
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from fluora_agent.errors import InvocationError, TransportConnectionError
from fluora_agent.models import Capability

logger = logging.getLogger(__name__)

CLIENT_INFO = types.Implementation(name="fluora-agent", version="1.0.0")
DEFAULT_INIT_TIMEOUT = 60.0


def _content_text(content: Sequence[Any] | None) -> str:
    """Flatten MCP content blocks into a single string."""
    parts: list[str] = []
    for item in content or []:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        elif hasattr(item, "model_dump_json"):
            parts.append(item.model_dump_json())
        else:
            parts.append(str(item))
    return "\n".join(parts)


class TransportClient:
    """
    Thin adapter over an initialized MCP ClientSession.

    Use connect() to spawn the server process:

        async with TransportClient.connect("npx", ["-y", "fluora-mcp@latest"]) as client:
            capabilities = await client.list_capabilities()
            text = await client.invoke("searchFluora", {})
    """

    def __init__(self, session: ClientSession) -> None:
        self._session = session

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        command: str,
        args: Sequence[str] = (),
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
    ) -> AsyncIterator["TransportClient"]:
        """Spawn the server and complete the MCP handshake. Raises TransportConnectionError."""
        params = StdioServerParameters(command=command, args=list(args))
        async with AsyncExitStack() as stack:
            try:
                read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
                session = await stack.enter_async_context(
                    ClientSession(read_stream, write_stream, client_info=CLIENT_INFO)
                )
                await asyncio.wait_for(session.initialize(), timeout=init_timeout)
            except Exception as exc:
                raise TransportConnectionError(
                    f"Could not start MCP server '{command} {' '.join(args)}': {exc}"
                ) from exc

            logger.info("Connected to MCP server: %s %s", command, " ".join(args))
            yield cls(session)

    async def list_capabilities(self) -> list[Capability]:
        try:
            result = await self._session.list_tools()
        except McpError as exc:
            raise TransportConnectionError(f"Capability discovery failed: {exc.error.message}") from exc
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, OSError) as exc:
            raise TransportConnectionError(f"MCP stream closed during discovery: {exc}") from exc

        capabilities = [
            Capability(
                name=tool.name,
                description=tool.description or "",
                argument_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]
        logger.debug("Discovered %d capabilities: %s", len(capabilities), [c.name for c in capabilities])
        return capabilities

    async def invoke(self, name: str, args: dict[str, Any]) -> str:
        """
        Call one tool and return its text content.

        Raises InvocationError when the server rejects the call or flags the
        result as an error, TransportConnectionError when the stream is gone.
        """
        logger.debug("invoke %s %s", name, args)
        try:
            result = await self._session.call_tool(name, args)
        except McpError as exc:
            raise InvocationError(name, exc.error.message) from exc
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, OSError) as exc:
            raise TransportConnectionError(f"MCP stream closed while calling '{name}': {exc}") from exc

        text = _content_text(result.content)
        if result.isError:
            raise InvocationError(name, text or "remote reported an error")
        return text
