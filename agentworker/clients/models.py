"""Core-service resources as seen by the orchestrator.

Payloads arrive in camelCase JSON; ``from_payload`` tolerates missing keys
and JSON nulls so that a partially populated card still yields a usable
task brief.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Workspace:
    id: str
    name: str = ""
    slug: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> Workspace:
        data = data or {}
        return cls(id=str(data.get("id") or ""), name=data.get("name") or "", slug=data.get("slug"))


@dataclass(frozen=True)
class Lane:
    id: str
    name: str = ""
    lane_number: int = 0

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> Lane:
        data = data or {}
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            lane_number=int(data.get("laneNumber", 0) or 0),
        )


@dataclass(frozen=True)
class CardRef:
    """Parent or child card summary."""

    id: str
    title: str
    type: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> CardRef:
        return cls(
            id=str(data.get("id") or ""),
            title=data.get("title") or "",
            type=data.get("type") or "",
        )


@dataclass(frozen=True)
class Card:
    id: str
    title: str
    project_id: str
    lane: Lane
    type: str = ""
    priority: str = ""
    status: str = ""
    description: str | None = None
    parent: CardRef | None = None
    children: tuple[CardRef, ...] = ()

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Card:
        board = data.get("board") or {}
        parent = data.get("parent")
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            project_id=str(board.get("projectId") or data.get("projectId") or ""),
            lane=Lane.from_payload(data.get("lane")),
            type=data.get("type") or "",
            priority=data.get("priority") or "",
            status=data.get("status") or "",
            description=data.get("description"),
            parent=CardRef.from_payload(parent) if parent else None,
            children=tuple(CardRef.from_payload(c) for c in data.get("children") or ()),
        )

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "status": self.status,
            "projectId": self.project_id,
            "laneNumber": self.lane.lane_number,
        }


@dataclass(frozen=True)
class Project:
    id: str
    name: str = ""
    slug: str | None = None
    local_path: str | None = None
    workspace: Workspace = field(default_factory=lambda: Workspace(id=""))

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> Project:
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            slug=data.get("slug"),
            local_path=data.get("localPath"),
            workspace=Workspace.from_payload(data.get("workspace")),
        )

    def resolve_path(self, projects_root: str) -> str:
        """Filesystem root of the project's working tree."""
        if self.local_path:
            return self.local_path
        workspace_slug = self.workspace.slug or "default"
        return f"{projects_root.rstrip('/')}/{workspace_slug}/{self.slug or self.id}"

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "workspaceId": self.workspace.id}
