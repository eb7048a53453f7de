"""Data classes returned by the tool-calling executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class UsageRecord:
    """Token and cost accounting, for one gateway call or summed over a run."""

    input_tokens: int = 0
    output_tokens: int = 0
    provider_cost: float = 0.0
    billed_amount: float = 0.0

    def accumulate(self, other: UsageRecord) -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.provider_cost += other.provider_cost
        self.billed_amount += other.billed_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "providerCost": self.provider_cost,
            "billedAmount": self.billed_amount,
        }


@dataclass
class ExecutionResult:
    """Return value of :meth:`ToolCallingExecutor.execute`."""

    content: str
    provider: str
    model: str
    usage: UsageRecord = field(default_factory=UsageRecord)
    tools_used: list[str] = field(default_factory=list)
    iterations: int = 0
    iteration_capped: bool = False
