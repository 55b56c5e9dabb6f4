"""
API request and response models for Tonka REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses.

    Gateway rejections (401 from the tokenizer, 503 on store outages) use the
    same shape, built by gateway.responses.error_body().
    """

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Identity carried by the verified bearer token (GET /api/v1/me)."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    role: str
    issuer: str
    expires_at: int


class GatewayStages(BaseModel):
    """One gateway and its ordered stage identifiers."""

    model_config = ConfigDict(frozen=True)

    name: str
    stages: list[str]


class GatewaysResponse(BaseModel):
    """Response for GET /api/v1/gateways."""

    model_config = ConfigDict(frozen=True)

    gateways: list[GatewayStages]
