# sequencer.py
# Fixed five-stage purchase workflow against the Fluora marketplace.
#
#   Discovery → ToolListing → Pricing → PaymentMethods → Purchase
#
# Each stage resolves its bindings from earlier stage results, builds an
# instruction naming the exact tool call to make, replays the ledger under the
# stage's render policy, and records the agent's final message. The sequence
# only moves forward. Any error escaping the agent halts it; Purchase is never
# issued with an unresolved binding.

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from fluora_agent import display
from fluora_agent.agent import Agent
from fluora_agent.config import DEFAULT_PAYMENT_METHOD
from fluora_agent.errors import ExtractionFailure, FluoraAgentError
from fluora_agent.extract import NOT_FOUND, Where, defer_reference, extract_group, require_group
from fluora_agent.ledger import ContextLedger, EntireLedger, Labeled, LastN, RenderPolicy
from fluora_agent.models import StageId, StepResult, ToolDirective

logger = logging.getLogger(__name__)

SEARCH_TOOL = "searchFluora"
LIST_TOOLS_TOOL = "listTools"
CALL_SERVER_TOOL = "callServerTool"


# ---------------------------------------------------------------------------
# Stage definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Binding:
    """
    A value a stage needs, and the earlier stage it is read from.

    Bindings that share a source and hints are resolved together from one
    record. near prefers the record mentioning the hint; where keeps only
    records carrying the given key/value pairs.
    """

    field: str
    source: StageId
    near: str | None = None
    where: Where = ()


@dataclass(frozen=True)
class StageSpec:
    stage: StageId
    announce: str
    label: str
    directive: str
    policy: RenderPolicy
    tool: str
    server_tool: str | None = None
    bindings: tuple[Binding, ...] = ()
    constants: dict[str, Any] = field(default_factory=dict)
    appends: bool = True
    fail_closed: bool = False

    def __post_init__(self) -> None:
        for binding in self.bindings:
            if binding.source.position >= self.stage.position:
                raise ValueError(
                    f"{self.stage.value} cannot bind '{binding.field}' from "
                    f"later stage {binding.source.value}"
                )


def _server_bindings(server_name: str) -> tuple[Binding, ...]:
    return (
        Binding("serverId", StageId.DISCOVERY, near=server_name),
        Binding("mcpServerUrl", StageId.DISCOVERY, near=server_name),
    )


def build_stages(
    server_name: str,
    target_url: str,
    payment_method: str = DEFAULT_PAYMENT_METHOD,
) -> tuple[StageSpec, ...]:
    """The five stages in execution order."""
    server_bindings = _server_bindings(server_name)
    return (
        StageSpec(
            stage=StageId.DISCOVERY,
            announce="Searching servers on fluora",
            label="List servers response",
            directive="Search servers on fluora and return all the data from the response",
            policy=LastN(0),
            tool=SEARCH_TOOL,
        ),
        StageSpec(
            stage=StageId.TOOL_LISTING,
            announce=f"Listing tools from the {server_name} server",
            label="List tools response",
            directive=f"List tools from the {server_name} server",
            policy=EntireLedger(),
            tool=LIST_TOOLS_TOOL,
            bindings=server_bindings,
        ),
        StageSpec(
            stage=StageId.PRICING,
            announce="Pricing listing",
            label="Pricing listing response",
            directive=f"Pricing listing from the {server_name} server",
            policy=EntireLedger(),
            tool=CALL_SERVER_TOOL,
            server_tool="pricing-listing",
            bindings=server_bindings,
        ),
        StageSpec(
            stage=StageId.PAYMENT_METHODS,
            announce="Payment methods",
            label="Payment methods response",
            directive=f"Payment methods from the {server_name} server",
            policy=EntireLedger(),
            tool=CALL_SERVER_TOOL,
            server_tool="payment-methods",
            bindings=server_bindings,
        ),
        StageSpec(
            stage=StageId.PURCHASE,
            announce="Making a purchase",
            label="Purchase response",
            directive=(
                f"Call the 'make-purchase' tool. Convert this website: {target_url} "
                "and use base sepolia as payment method"
            ),
            policy=Labeled.of(StageId.DISCOVERY, StageId.PRICING, StageId.PAYMENT_METHODS),
            tool=CALL_SERVER_TOOL,
            server_tool="make-purchase",
            bindings=server_bindings
            + (
                Binding("itemId", StageId.PRICING),
                Binding("itemPrice", StageId.PRICING),
                Binding(
                    "serverWalletAddress",
                    StageId.PAYMENT_METHODS,
                    where=(("paymentMethod", payment_method),),
                ),
            ),
            constants={"paymentMethod": payment_method, "targetUrl": target_url},
            appends=False,
            fail_closed=True,
        ),
    )


# ---------------------------------------------------------------------------
# Sequencer
# ---------------------------------------------------------------------------


class StepSequencer:
    """
    Drives an Agent through the stage list, one stage per step() call.

    Example:
        sequencer = StepSequencer(agent, server_name="PDFShift", target_url="https://www.fluora.ai")
        purchase = await sequencer.run()
    """

    def __init__(
        self,
        agent: Agent,
        ledger: ContextLedger | None = None,
        *,
        server_name: str,
        target_url: str,
        payment_method: str = DEFAULT_PAYMENT_METHOD,
        strict: bool = False,
        stages: tuple[StageSpec, ...] | None = None,
    ) -> None:
        self._agent = agent
        self.ledger = ledger if ledger is not None else ContextLedger()
        self._strict = strict
        self._stages = stages or build_stages(server_name, target_url, payment_method)
        self._cursor = 0
        self._halted = False
        self.directives: dict[StageId, ToolDirective] = {}
        self.results: dict[StageId, StepResult] = {}

    @property
    def next_stage(self) -> StageId | None:
        if self._halted or self._cursor >= len(self._stages):
            return None
        return self._stages[self._cursor].stage

    @property
    def halted(self) -> bool:
        return self._halted

    # ------------------------------------------------------------------
    # Binding resolution
    # ------------------------------------------------------------------

    def resolve_bindings(self, spec: StageSpec) -> dict[str, str]:
        """
        Extract every binding the stage needs from the ledger, one record per group.

        Fail-closed stages (and every stage in strict mode) raise
        ExtractionFailure on the first unresolved binding. Other stages get a
        deferred reference the model is asked to resolve itself.
        """
        groups: dict[tuple[StageId, str | None, Where], list[str]] = {}
        for binding in spec.bindings:
            groups.setdefault((binding.source, binding.near, binding.where), []).append(binding.field)

        values: dict[str, str] = {}
        for (source, near, where), fields in groups.items():
            entry = self.ledger.latest(source)
            content = entry.content if entry else ""

            if spec.fail_closed or self._strict:
                try:
                    values.update(require_group(content, tuple(fields), source, near, where))
                except ExtractionFailure as exc:
                    display.extraction_failed(spec.stage.value, exc.field, source.value)
                    raise
                continue

            found = extract_group(content, tuple(fields), near, where)
            if found is NOT_FOUND:
                label = entry.label if entry else f"{source.value} response"
                found = {name: defer_reference(name, label) for name in fields}
                logger.warning(
                    "%s: %s not found in %s result; deferring to the model.",
                    spec.stage.value, ", ".join(fields), source.value,
                )
            values.update(found)
        return values

    def build_directive(self, spec: StageSpec) -> ToolDirective:
        bindings = self.resolve_bindings(spec)
        if spec.server_tool is None:
            return ToolDirective(tool=spec.tool, arguments=bindings)

        server_args = {k: v for k, v in bindings.items() if k not in ("serverId", "mcpServerUrl")}
        server_args.update(spec.constants)
        return ToolDirective(
            tool=spec.tool,
            arguments={
                "serverId": bindings.get("serverId"),
                "mcpServerUrl": bindings.get("mcpServerUrl"),
                "toolName": spec.server_tool,
                "args": server_args,
            },
        )

    @staticmethod
    def build_instruction(spec: StageSpec, directive: ToolDirective) -> str:
        lines = [spec.directive, "", f"Call the tool `{directive.tool}`"]
        if directive.arguments:
            lines[-1] += " with these arguments:"
            lines.append(json.dumps(directive.arguments, indent=2))
        else:
            lines[-1] += "."
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def step(self) -> StepResult:
        """Run the next stage. Any FluoraAgentError halts the sequence for good."""
        if self._halted:
            raise RuntimeError("Sequence halted by an earlier failure.")
        if self._cursor >= len(self._stages):
            raise RuntimeError("Sequence already complete.")

        spec = self._stages[self._cursor]
        display.stage_start(self._cursor, len(self._stages), spec.announce)

        try:
            directive = self.build_directive(spec)
            self.directives[spec.stage] = directive
            instruction = self.build_instruction(spec, directive)
            context = self.ledger.render(spec.policy)
            logger.debug("%s: %d context message(s)", spec.stage.value, len(context))
            reply = await self._agent.invoke(instruction, context)
        except FluoraAgentError:
            self._halted = True
            raise

        result = StepResult(stage=spec.stage, content=reply.final_message, label=spec.label)
        if spec.appends:
            self.ledger.append(result)
        self.results[spec.stage] = result
        self._cursor += 1

        display.stage_result(spec.label, result.content)
        if spec.stage is StageId.TOOL_LISTING:
            display.ledger_dump(list(self.ledger))
        return result

    async def run(self) -> StepResult:
        """Run all remaining stages and return the last result."""
        result = None
        while self.next_stage is not None:
            result = await self.step()
        if result is None:
            raise RuntimeError("No stages left to run.")
        return result
