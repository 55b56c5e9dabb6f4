"""
api/routes/v1/account.py -- Token-authenticated account endpoints (route group "api").

Routes:
  GET /api/v1/me        -- identity from the verified bearer token
  GET /api/v1/gateways  -- configured stage table (admin role only)

Auth policy:
  Every path under /api except the public health check goes through the
  "api" gateway, whose tokenizer stage has already verified the bearer token
  and stored its claims on request.state.claims by the time these handlers
  run. Handlers only add role checks on top.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from api.models import ErrorDetail, GatewayStages, GatewaysResponse, MeResponse

router = APIRouter()


def _claims(request: Request) -> dict:
    """Return the verified claims, or raise 401 if the gateway did not run."""
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail=ErrorDetail(code="unauthorized", message="Authentication required.").model_dump(),
        )
    return claims


@router.get("/me", response_model=MeResponse)
def me(request: Request) -> MeResponse:
    """Return the identity the bearer token was issued for."""
    claims = _claims(request)
    return MeResponse(
        user_id=claims["user_id"],
        username=claims["sub"],
        role=claims["role"],
        issuer=claims["iss"],
        expires_at=claims["exp"],
    )


@router.get("/gateways", response_model=GatewaysResponse)
def gateways(request: Request) -> GatewaysResponse:
    """List each gateway with its stage identifiers, in execution order. Admin only."""
    claims = _claims(request)
    if claims.get("role") != "admin":
        raise HTTPException(
            status_code=403,
            detail=ErrorDetail(code="forbidden", message="Admin access required.").model_dump(),
        )
    table = request.app.state.pipeline.table
    return GatewaysResponse(
        gateways=[GatewayStages(name=name, stages=list(stages)) for name, stages in table.gateways.items()]
    )
