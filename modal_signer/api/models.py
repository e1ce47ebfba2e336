"""Pydantic request/response models for the bridge REST API.

Request field names follow the wire format (camelCase) through aliases.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from modal_signer import __version__

UINT256_MAX = 2**256 - 1


class OrgRequest(BaseModel):
    """Fields shared by every operation request."""

    model_config = ConfigDict(populate_by_name=True)

    org_id: str = Field(alias="orgId", min_length=1, max_length=256)


class RegisterPeerRequest(OrgRequest):
    """POST /api/register-peer: Register a swarm peer ID for the caller's account."""

    peer_id: str = Field(alias="peerId", min_length=1, max_length=1024)


class SubmitWinnerRequest(OrgRequest):
    """POST /api/submit-winner: Submit the winners of a round."""

    round_number: int = Field(alias="roundNumber", ge=0, le=UINT256_MAX, strict=True)
    winners: list[str] = Field(max_length=1024)


class HashResponse(BaseModel):
    hash: str


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """GET /health: Liveness check."""

    status: str
    version: str = __version__
    chain: str = ""
    chain_id: int = 0
