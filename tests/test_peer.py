"""Tests covering the media-peer client and direct peer forwarding."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from relay import RelayConfig
from relay.api.server import create_app
from relay.exchange import SignalingRelay
from relay.peer import MediaPeerClient, PeerForwardError, PeerForwarder

OFFER = {"sdp": "v=0 offer", "type": "offer"}
ANSWER = {"sdp": "v=0 answer", "type": "answer"}


def test_media_peer_client_negotiates_through_relay() -> None:
    relay = SignalingRelay(RelayConfig(answer_timeout=5.0, offer_timeout=5.0, prune_interval=0))
    app = create_app(state=relay)
    transport = httpx.ASGITransport(app=app)

    async def scenario():
        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as viewer:
            async with MediaPeerClient("http://relay", transport=transport) as peer:
                await viewer.post("/ice-candidate/cam1", json={"candidate": "viewer-1"})
                viewer_call = asyncio.ensure_future(viewer.post("/offer/cam1", json=OFFER))

                offer = await peer.wait_offer("cam1")
                ice = await peer.wait_ice("cam1")
                empty = await peer.wait_ice("cam1")
                await peer.post_ice("cam1", {"candidate": "peer-1"})
                status = await peer.post_answer("cam1", ANSWER)

                answer = (await viewer_call).json()
                peer_ice = (await viewer.get("/ice-candidate/cam1")).json()
                health = await peer.health()
                return offer, ice, empty, status, answer, peer_ice, health

    offer, ice, empty, status, answer, peer_ice, health = asyncio.run(scenario())

    assert offer == OFFER
    assert ice == {"candidate": "viewer-1"}
    assert empty is None
    assert status == {"status": "ok"}
    assert answer == ANSWER
    assert peer_ice == {"candidate": "peer-1"}
    assert health["status"] == "ok"


def test_media_peer_client_publisher_pulls() -> None:
    relay = SignalingRelay(RelayConfig(publisher_ids=["cam3"], prune_interval=0))
    transport = httpx.ASGITransport(app=create_app(state=relay))

    async def scenario():
        async with httpx.AsyncClient(transport=transport, base_url="http://relay") as publisher:
            await publisher.post("/publish/offer/cam3", json=OFFER)
            await publisher.post("/publish/ice-candidate/cam3", json={"candidate": "pub"})
        async with MediaPeerClient("http://relay", transport=transport) as peer:
            offer = await peer.publisher_wait_offer("cam3")
            ice = await peer.publisher_wait_ice("cam3")
            with pytest.raises(httpx.HTTPStatusError):
                await peer.publisher_wait_offer("cam1")
            return offer, ice

    offer, ice = asyncio.run(scenario())

    assert offer == OFFER
    assert ice == {"candidate": "pub"}


def test_forwarder_posts_ice_to_peer() -> None:
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"status": "ok"})

    forwarder = PeerForwarder("http://peer.local/", transport=httpx.MockTransport(handler))

    result = asyncio.run(forwarder.forward_ice("cam3", {"candidate": "a"}))

    assert result == {"status": "ok"}
    assert captured == [("POST", "/client-ice/cam3", {"candidate": "a"})]


def test_forwarder_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    forwarder = PeerForwarder("http://peer.local", transport=httpx.MockTransport(handler))

    with pytest.raises(PeerForwardError) as excinfo:
        asyncio.run(forwarder.forward_offer("cam1", OFFER))

    assert excinfo.value.status_code is None


def test_publish_offer_is_forwarded_when_peer_configured() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"sdp": "peer-answer", "type": "answer"})

    forwarder = PeerForwarder("http://peer.local", transport=httpx.MockTransport(handler))
    relay = SignalingRelay(RelayConfig(publisher_ids=["cam3"], prune_interval=0), forwarder=forwarder)

    result = asyncio.run(relay.publish_offer("cam3", OFFER))

    assert result == {"sdp": "peer-answer", "type": "answer"}
    # the publisher offer is still stored for a polling peer
    assert relay.publisher_take_offer("cam3") == OFFER
