"""
Async client for the media-peer side of the relay.

The media peer cannot accept inbound connections, so it drives the whole
negotiation by polling the ``/backend`` endpoints.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

Payload = Dict[str, Any]


class MediaPeerClient:
    """
    Thin wrapper over :class:`httpx.AsyncClient`.

    ``poll_timeout`` must exceed the relay's own long-poll window, otherwise
    the HTTP request is cut before the relay answers with ``null``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        poll_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(float(poll_timeout), connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> "MediaPeerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str) -> Any:
        response = await self._client.get(path)
        response.raise_for_status()
        return response.json()

    async def _post(self, path: str, payload: Payload) -> Any:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return response.json()

    async def wait_offer(self, session_id: str) -> Optional[Payload]:
        return await self._get(f"/backend/wait-offer/{session_id}")

    async def post_answer(self, session_id: str, answer: Payload) -> Payload:
        return await self._post(f"/backend/answer/{session_id}", answer)

    async def wait_ice(self, session_id: str) -> Optional[Payload]:
        return await self._get(f"/backend/wait-ice/{session_id}")

    async def post_ice(self, session_id: str, candidate: Payload) -> Payload:
        return await self._post(f"/backend/ice-candidate/{session_id}", candidate)

    async def publisher_wait_offer(self, session_id: str) -> Optional[Payload]:
        return await self._get(f"/backend/publish/wait-offer/{session_id}")

    async def publisher_wait_ice(self, session_id: str) -> Optional[Payload]:
        return await self._get(f"/backend/publish/wait-ice/{session_id}")

    async def health(self) -> Payload:
        return await self._get("/health")
