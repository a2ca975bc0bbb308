"""Endpoints called by the embedded admin page with a session token."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from sticky_cart.auth.dependencies import get_session_shop

router = APIRouter(prefix="/api", tags=["session"])


class SessionDataResponse(BaseModel):
    success: bool
    shop: str
    message: str
    timestamp: str


@router.get("/data", response_model=SessionDataResponse)
async def get_session_data(shop: str = Depends(get_session_shop)) -> SessionDataResponse:
    """Echo the verified shop; lets the admin page check its token round-trip."""
    return SessionDataResponse(
        success=True,
        shop=shop,
        message="Session token verified successfully!",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
