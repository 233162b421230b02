# ledger.py
# Append-only record of stage results and the policies used to replay it.
#
# Entries are looked up by StageId, never by position. Rendering keeps each
# entry's label so replayed JSON blobs stay attributable
# ("Payment methods response: {...}").

from collections.abc import Iterator
from dataclasses import dataclass

from fluora_agent.models import StageId, StepResult


# ---------------------------------------------------------------------------
# Render policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntireLedger:
    """Replay every entry."""


@dataclass(frozen=True)
class LastN:
    """Replay the most recent n entries."""

    n: int

    def __post_init__(self) -> None:
        if self.n < 0:
            raise ValueError("LastN requires n >= 0")


@dataclass(frozen=True)
class Labeled:
    """Replay only entries produced by the given stages, in ledger order."""

    stages: frozenset[StageId]

    @classmethod
    def of(cls, *stages: StageId) -> "Labeled":
        return cls(frozenset(stages))


RenderPolicy = EntireLedger | LastN | Labeled


# ---------------------------------------------------------------------------
# ContextLedger
# ---------------------------------------------------------------------------


class ContextLedger:
    def __init__(self) -> None:
        self._entries: list[StepResult] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[StepResult]:
        return iter(tuple(self._entries))

    def append(self, result: StepResult) -> None:
        self._entries.append(result)

    def latest(self, stage: StageId) -> StepResult | None:
        """Most recent entry tagged with stage, or None."""
        for entry in reversed(self._entries):
            if entry.stage == stage:
                return entry
        return None

    def select(self, policy: RenderPolicy) -> list[StepResult]:
        if isinstance(policy, EntireLedger):
            return list(self._entries)
        if isinstance(policy, LastN):
            return list(self._entries[-policy.n:]) if policy.n else []
        if isinstance(policy, Labeled):
            return [entry for entry in self._entries if entry.stage in policy.stages]
        raise TypeError(f"Unknown render policy: {policy!r}")

    def render(self, policy: RenderPolicy) -> list[dict[str, str]]:
        """Chat messages for the selected entries, each prefixed with its label."""
        return [entry.as_message() for entry in self.select(policy)]
