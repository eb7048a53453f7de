"""User-turn templates for standard and conversation runs."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentworker.agent.context import StandardContext

CONVERSATION_CONTINUATION = """\
Continue the conversation above. Review what the human has said and respond \
appropriately. If they have requested changes or provided feedback, address \
those points. If they are satisfied, ask if there's anything else or suggest \
next steps.

Remember to use your tools (read_file, write_file, list_directory) to actually \
make code changes - don't just describe what should be done."""


def build_task_brief(ctx: StandardContext) -> str:
    """Render the single user message that opens a standard run."""
    card = ctx.card
    lines = [
        "Please help with the following task:",
        "",
        f"**Workspace:** {ctx.workspace.name}",
        f"**Project:** {ctx.project.name}",
        f"**Lane:** {ctx.lane.name}",
        "",
        "**Card Details:**",
        f"- Title: {card.title}",
        f"- Type: {card.type}",
        f"- Priority: {card.priority}",
        f"- Status: {card.status}",
    ]
    if card.description:
        lines.append(f"- Description: {card.description}")
    lines.append("")

    if ctx.instructions:
        lines += ["**CoPilot Instructions:**", ctx.instructions, ""]

    lines.append("**Context:**")
    if card.parent is not None:
        lines.append(f"- Parent Card: {card.parent.title} ({card.parent.type})")
    if card.children:
        children = ", ".join(f"{c.title} ({c.type})" for c in card.children)
        lines.append(f"- Child Cards: {children}")
    if ctx.user_context:
        extra = ", ".join(f"{k}={v}" for k, v in ctx.user_context.items())
        lines.append(f"- Request Context: {extra}")

    lines += ["", "Please provide specific, actionable guidance for this task based on your expertise."]
    return "\n".join(lines)
