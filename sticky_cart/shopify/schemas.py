"""Pydantic schemas for Shopify Admin API payloads and our own responses."""

from pydantic import BaseModel, Field


class AccessToken(BaseModel):
    """Response body of POST /admin/oauth/access_token (offline token)."""

    access_token: str = Field(min_length=1)
    scope: str = ""


class WebhookRegistration(BaseModel):
    """Body of POST /admin/api/{version}/webhooks.json (wrapped in ``webhook``)."""

    topic: str
    address: str
    format: str = "json"


class HealthResponse(BaseModel):
    status: str
    message: str
    timestamp: str
