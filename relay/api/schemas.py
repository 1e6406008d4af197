"""
Pydantic schemas for the relay's HTTP boundary.

Payloads are opaque to the relay; these models only reject bodies that are
obviously not an SDP description or an ICE candidate.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, validator


class SessionDescriptionModel(BaseModel):
    sdp: str
    type: Literal["offer", "answer"]
    model_config = ConfigDict(extra="allow")

    @validator("type", pre=True)
    def _normalise_type(cls, value: object) -> str:
        return str(value or "").strip().lower()

    def to_payload(self) -> dict:
        return self.model_dump(exclude_unset=True)


class OfferModel(SessionDescriptionModel):
    type: Literal["offer"]


class AnswerModel(SessionDescriptionModel):
    type: Literal["answer"]


class IceCandidateModel(BaseModel):
    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")
    username_fragment: Optional[str] = Field(default=None, alias="usernameFragment")
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class StatusModel(BaseModel):
    status: str


class HealthModel(BaseModel):
    status: str = "ok"
    timestamp: str


class StatsModel(BaseModel):
    sessions: int
    offers: int
    queuedCandidates: int
    droppedCandidates: int
    pendingWaits: int
