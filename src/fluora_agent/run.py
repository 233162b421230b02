# run.py
# Entry point. Config and wiring only, no logic lives here.
#
# Settings come from the environment (see config.py). Swap FLUORA_MODEL for
# any OpenRouter-supported model. https://openrouter.ai/models

import asyncio
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from fluora_agent import display
from fluora_agent.agent import AgentDriver
from fluora_agent.config import Settings
from fluora_agent.errors import ConfigError, FluoraAgentError
from fluora_agent.models import StepResult
from fluora_agent.sequencer import StepSequencer
from fluora_agent.transport import TransportClient

logger = logging.getLogger("fluora_agent")


def _leaves(group: BaseExceptionGroup) -> list[BaseException]:
    leaves: list[BaseException] = []
    for exc in group.exceptions:
        leaves.extend(_leaves(exc) if isinstance(exc, BaseExceptionGroup) else [exc])
    return leaves


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


async def run_workflow(settings: Settings) -> StepResult:
    """Open one session, run every stage, and return the purchase result."""
    display.banner(settings.model, settings.mcp_command, settings.mcp_args)
    display.connecting(settings.mcp_command)

    async with TransportClient.connect(settings.mcp_command, settings.mcp_args) as transport:
        capabilities = await transport.list_capabilities()
        display.capabilities_loaded(capabilities)

        agent = AgentDriver.from_settings(settings, transport, capabilities)
        sequencer = StepSequencer(
            agent,
            server_name=settings.server_name,
            target_url=settings.target_url,
            payment_method=settings.payment_method,
            strict=settings.strict,
        )
        result = await sequencer.run()

    display.final_result(result.content)
    return result


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        display.halt(str(exc))
        sys.exit(1)

    configure_logging(settings.log_level)

    # The MCP client runs inside anyio task groups, which may wrap errors in groups.
    try:
        asyncio.run(run_workflow(settings))
    except* FluoraAgentError as group:
        for exc in _leaves(group):
            logger.debug("Workflow aborted", exc_info=exc)
            display.halt(str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
