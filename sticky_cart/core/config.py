import json
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Delivered by Shopify automatically; manual registration is rejected.
COMPLIANCE_TOPICS = frozenset(
    {"customers/data_request", "customers/redact", "shop/redact"}
)


def _normalise_host(url: str) -> str:
    """Return the public base URL without a trailing slash.

    HOST is the externally reachable origin Shopify calls back into, e.g.
    ``https://sticky-cart.example.com``. Both the OAuth redirect URI and the
    webhook address are built from it, so a bare hostname or a relative
    value is rejected here rather than producing broken URLs later.
    """
    url = url.strip().rstrip("/")
    if not url.startswith(("https://", "http://")):
        raise ValueError("HOST must be an absolute http(s) URL")
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    SHOPIFY_API_KEY, SHOPIFY_API_SECRET and HOST have no defaults: if any
    of them is missing the app factory raises ``ValidationError`` and the
    process never starts serving traffic.

    The instance is built once in ``create_app()`` and handed to every
    component; request handlers never read the environment themselves.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
    )

    # Shopify app credentials (Partner dashboard → Client credentials)
    shopify_api_key: str
    shopify_api_secret: SecretStr
    host: str

    # OAuth scopes: comma-separated, passed through to the authorize URL.
    scopes: str = "write_themes"
    shopify_api_version: str = "2024-01"

    # Optional topics registered after install. Compliance topics are
    # managed by Shopify and must not appear here. Comma-separated like
    # SCOPES; a JSON list is accepted too.
    webhook_topics: Annotated[list[str], NoDecode] = ["app/uninstalled"]

    # Upper bound for every outbound call to Shopify, in seconds.
    outbound_timeout: float = Field(default=10.0, gt=0, le=30)

    # Require the OAuth state cookie set on /auth to match on /auth/callback.
    enforce_oauth_state: bool = True

    # Sentry: leave blank to disable error capture.
    sentry_dsn: str = ""

    # App
    debug: bool = True

    @field_validator("shopify_api_key", "host", mode="before")
    @classmethod
    def require_non_blank(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("shopify_api_secret")
    @classmethod
    def require_secret(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("host")
    @classmethod
    def normalise_host(cls, v: str) -> str:
        return _normalise_host(v)

    @field_validator("webhook_topics", mode="before")
    @classmethod
    def split_topics(cls, v):
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

    @field_validator("webhook_topics")
    @classmethod
    def reject_compliance_topics(cls, v: list[str]) -> list[str]:
        forbidden = sorted(set(v) & COMPLIANCE_TOPICS)
        if forbidden:
            raise ValueError(
                f"compliance topics are delivered automatically and cannot be registered: {forbidden}"
            )
        return v

    @property
    def secret_bytes(self) -> bytes:
        return self.shopify_api_secret.get_secret_value().encode("utf-8")

    @property
    def scope_list(self) -> list[str]:
        return [s.strip() for s in self.scopes.split(",") if s.strip()]

    @property
    def uses_https(self) -> bool:
        return self.host.startswith("https://")


def get_settings() -> Settings:
    return Settings()
