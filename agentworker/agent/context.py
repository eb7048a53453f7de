"""Tagged execution contexts, one per run mode."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from agentworker.clients.models import Card, Lane, Project, Workspace


@dataclass(frozen=True)
class ConversationTurn:
    """One prior exchange recovered from the card's context log."""

    role: Literal["human", "agent"]
    author: str
    content: str
    timestamp: str = ""


@dataclass(frozen=True)
class StandardContext:
    """A fresh run: the model receives a task brief built from the card."""

    card: Card
    project: Project
    instructions: str | None = None
    user_context: dict[str, Any] = field(default_factory=dict)
    mode: Literal["standard"] = "standard"

    @property
    def lane(self) -> Lane:
        return self.card.lane

    @property
    def workspace(self) -> Workspace:
        return self.project.workspace


@dataclass(frozen=True)
class ConversationContext:
    """A follow-up run: the model continues a human/agent dialogue."""

    card: Card
    project: Project
    history: tuple[ConversationTurn, ...] = ()
    user_context: dict[str, Any] = field(default_factory=dict)
    mode: Literal["conversation"] = "conversation"

    @property
    def lane(self) -> Lane:
        return self.card.lane

    @property
    def workspace(self) -> Workspace:
        return self.project.workspace


ExecutionContext = Union[StandardContext, ConversationContext]


def snapshot(ctx: ExecutionContext) -> dict[str, Any]:
    """JSON-safe summary of a context, stored as part of the agent state."""
    return {
        "mode": ctx.mode,
        "card": ctx.card.summary(),
        "project": ctx.project.summary(),
        "lane": {"id": ctx.lane.id, "name": ctx.lane.name, "laneNumber": ctx.lane.lane_number},
        "workspace": {"id": ctx.workspace.id, "name": ctx.workspace.name},
        "userContext": ctx.user_context,
    }
