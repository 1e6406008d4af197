"""
Media peer helpers.
"""

from __future__ import annotations

from .client import MediaPeerClient
from .forward import PeerForwardError, PeerForwarder

__all__ = ["MediaPeerClient", "PeerForwardError", "PeerForwarder"]
