"""
Direct forwarding of signaling payloads to a media peer that exposes HTTP.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .. import RelayError
from ..mailbox import Payload

LOG = logging.getLogger(__name__)


class PeerForwardError(RelayError):
    """Raised when the media peer cannot be reached or rejects a payload."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PeerForwarder:
    """
    POST offers and candidates straight to a media peer.

    Used as a fallback when no media peer answered through the long-poll
    exchange in time, and for publisher submissions.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = str(base_url).rstrip("/")
        self.timeout = httpx.Timeout(float(timeout), connect=min(float(timeout), 5.0))
        self._transport = transport

    async def forward_offer(self, session_id: str, offer: Payload) -> Payload:
        return await self._post(f"/client-offer/{session_id}", offer)

    async def forward_ice(self, session_id: str, candidate: Payload) -> Payload:
        return await self._post(f"/client-ice/{session_id}", candidate)

    async def _post(self, path: str, payload: Payload) -> Payload:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, json=payload)
            except httpx.HTTPError as exc:
                LOG.warning("Forward to %s failed: %s", url, exc)
                raise PeerForwardError(f"Peer request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {"detail": response.text}

        if response.is_error:
            LOG.warning("Peer rejected %s with status %s", url, response.status_code)
            raise PeerForwardError(
                f"Peer returned {response.status_code}: {data}",
                status_code=response.status_code,
            )
        return data
