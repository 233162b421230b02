# display.py
# All terminal output for the Fluora purchase workflow.
#
# This module owns presentation entirely. The sequencer and the agent loop
# never format strings; they call named functions here.
#
# Colour language:
#   cyan: workflow / stage progress
#   blue: model and transport setup
#   magenta: tool calls issued inside the agent loop
#   green: stage results
#   red: failures and halts

import json

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from fluora_agent.models import Capability, StepResult

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Session setup
# ---------------------------------------------------------------------------


def banner(model: str, command: str, args: list[str]) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Fluora MCP Purchase Agent[/bold cyan]\n"
            "[dim]Discovery → Tool listing → Pricing → Payment methods → Purchase[/dim]\n\n"
            f"[dim]Model      :[/dim] [white]{model}[/white]\n"
            f"[dim]MCP server :[/dim] [white]{command} {' '.join(args)}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def connecting(command: str) -> None:
    console.print()
    console.print(_label("TRANSPORT", "blue"), f"[blue] → Spawning MCP server via {command}…[/blue]")


def capabilities_loaded(capabilities: list[Capability]) -> None:
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold blue", padding=(0, 1))
    table.add_column("Tool", style="bold white")
    table.add_column("Description", style="dim white")
    for capability in capabilities:
        table.add_row(capability.name, _mono(capability.description, 80))
    console.print(
        Panel(
            table,
            title=_label(f"TRANSPORT: {len(capabilities)} TOOL(S)", "blue"),
            border_style="blue",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def stage_start(index: int, total: int, announce: str) -> None:
    console.print()
    console.print(Rule(f"[cyan]STAGE [{index + 1}/{total}][/cyan]", style="cyan"))
    console.print(f"[bold cyan]{announce}[/bold cyan]")


def stage_result(label: str, content: str) -> None:
    console.print(
        Panel(
            Text(content or "<empty>"),
            title=_label(label.upper(), "green"),
            border_style="green",
            padding=(0, 2),
        )
    )


def ledger_dump(entries: list[StepResult]) -> None:
    console.print()
    console.print(Rule("[dim]ALL TOOL RESPONSES[/dim]", style="dim"))
    for entry in entries:
        console.print(f"[dim]{entry.stage.value}[/dim] ", Text(_mono(entry.as_message()["content"], 160)))


def extraction_failed(stage: str, field: str, source: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]'{field}' could not be recovered from the {source} result.[/bold red]\n"
            f"[dim]{stage} will not be issued with an unresolved binding.[/dim]",
            title=_label("BINDING UNRESOLVED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


def tool_call(tool: str, args: dict) -> None:
    console.print(
        f"  [magenta]Action[/magenta]   [bold white]{tool}[/bold white] ",
        Text(_mono(json.dumps(args), 160), style="dim"),
    )


def tool_result(observation: str) -> None:
    console.print("  [magenta]Observe[/magenta]  ", Text(_mono(observation, 140)))


def tool_error(tool: str, message: str) -> None:
    console.print(f"  [red]Error[/red]    [bold white]{tool}[/bold white]  ", Text(_mono(message, 140)))


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            Text(result or "<empty>"),
            title=_label("PURCHASE RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            Text(reason, style="bold white"),
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
