"""Async client for the core service (runs, cards, projects, auth)."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Literal

import httpx
import structlog

from agentworker.clients.models import Card, Project
from agentworker.services import CoreServiceError

log = structlog.get_logger("agentworker.clients")

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds
_RETRY_MAX_DELAY = 5.0

CardTrigger = Literal[
    "agent_start", "agent_complete", "human_approve", "human_reject", "document_generated"
]


class CoreServiceClient:
    """Thin async wrapper around the core service REST API.

    Every request carries the internal service token and is retried on
    timeouts, transport errors and 5xx responses. Other non-2xx responses
    raise :class:`CoreServiceError` at once.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        api_url: str = "http://localhost:3010",
        timeout: float = 10.0,
        retry_base_delay: float = _RETRY_BASE_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CoreServiceClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── runs ───────────────────────────────────────────────────────────────

    async def create_run(
        self, *, card_id: str, agent_id: str, provider: str, model: str, user_id: str
    ) -> dict[str, Any]:
        body = {
            "cardId": card_id,
            "agentId": agent_id,
            "provider": provider,
            "model": model,
            "userId": user_id,
        }
        return (await self._request("POST", "/runs", json=body)).json()

    async def update_run(
        self,
        run_id: str,
        *,
        status: str,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        cost: float | None = None,
        price: float | None = None,
        completed_at: datetime | None = None,
        error: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"status": status}
        if input_tokens is not None:
            body["inputTokens"] = input_tokens
        if output_tokens is not None:
            body["outputTokens"] = output_tokens
        if cost is not None:
            body["cost"] = cost
        if price is not None:
            body["price"] = price
        if completed_at is not None:
            body["completedAt"] = completed_at.isoformat()
        if error is not None:
            body["error"] = error
        return (await self._request("PATCH", f"/runs/{run_id}", json=body)).json()

    # ── cards / projects ───────────────────────────────────────────────────

    async def get_card(self, card_id: str) -> Card | None:
        """Return the card, or ``None`` when the core service answers 404."""
        try:
            resp = await self._request("GET", f"/cards/{card_id}")
        except CoreServiceError as exc:
            if exc.status_code == 404:
                return None
            raise
        data = resp.json()
        return Card.from_payload(data) if data else None

    async def get_project(self, project_id: str) -> Project | None:
        try:
            resp = await self._request("GET", f"/projects/{project_id}")
        except CoreServiceError as exc:
            if exc.status_code == 404:
                return None
            raise
        data = resp.json()
        return Project.from_payload(data) if data else None

    async def transition_card(
        self,
        card_id: str,
        trigger: CardTrigger,
        performed_by: str,
        *,
        details: str | None = None,
        metadata: dict[str, Any] | None = None,
        target_lane_number: int | None = None,
    ) -> dict[str, Any]:
        """Fire a card state-machine trigger on the API server."""
        body: dict[str, Any] = {"trigger": trigger, "performedBy": performed_by}
        if details is not None:
            body["details"] = details
        if metadata is not None:
            body["metadata"] = metadata
        if target_lane_number is not None:
            body["targetLaneNumber"] = target_lane_number
        log.debug("core.transition_card", card_id=card_id, trigger=trigger)
        resp = await self._request("POST", f"{self._api_url}/api/cards/{card_id}/transition", json=body)
        return resp.json()

    # ── auth / health ──────────────────────────────────────────────────────

    async def validate_auth(self, token: str) -> dict[str, Any] | None:
        """Return the user behind *token*, or ``None`` if the core service rejects it."""
        try:
            resp = await self._request(
                "GET", "/auth/me", headers={"Authorization": f"Bearer {token}"}
            )
        except CoreServiceError as exc:
            if exc.status_code in (401, 403):
                return None
            raise
        return resp.json()

    async def health_check(self) -> bool:
        try:
            resp = await self._request("GET", "/health")
        except CoreServiceError:
            log.warning("core.health_check_failed", exc_info=True)
            return False
        return resp.json().get("status") == "healthy"

    # ── internal ───────────────────────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send with exponential backoff on 5xx, timeout and transport errors."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.request(method, url, **kwargs)
                if resp.status_code < 400:
                    return resp
                if resp.status_code < 500:
                    log.warning(
                        "core.request_rejected", method=method, url=url, status=resp.status_code
                    )
                    raise CoreServiceError(
                        f"Core service error: {resp.status_code} {resp.text}",
                        status_code=resp.status_code,
                    )
                log.warning(
                    "core.server_error",
                    method=method,
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = CoreServiceError(
                    f"Core service error: {resp.status_code} {resp.text}",
                    status_code=resp.status_code,
                )
            except httpx.TransportError as exc:
                log.warning(
                    "core.transport_error",
                    method=method,
                    url=url,
                    error=str(exc),
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = CoreServiceError(f"Core service unreachable: {method} {url}: {exc}")
                last_exc.__cause__ = exc

            if attempt < _MAX_RETRIES - 1:
                delay = min(self._retry_base_delay * (2**attempt), _RETRY_MAX_DELAY)
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]
