"""
Embedded sign-in client configuration. Values come from the environment (OKTA_OAUTH2_* like the provider SDK).
No secrets in this file; the client secret and session key come from env.
"""
import os
import secrets
from dataclasses import dataclass
from urllib.parse import urlparse


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _parse_scopes(value: str) -> tuple[str, ...]:
    return tuple(s for s in value.replace(",", " ").split() if s)


# Authorization server (issuer); either https://org.okta.com or https://org.okta.com/oauth2/<server>
ISSUER = os.environ.get("OKTA_OAUTH2_ISSUER", "https://example.okta.com/oauth2/default").rstrip("/")

CLIENT_ID = os.environ.get("OKTA_OAUTH2_CLIENT_ID", "test-client")
CLIENT_SECRET = os.environ.get("OKTA_OAUTH2_CLIENT_SECRET", "")

# Where the provider redirects with interaction_code; must be registered for the client
REDIRECT_URI = os.environ.get("OKTA_OAUTH2_REDIRECT_URI", "http://localhost:8000/login/callback")

SCOPES = _parse_scopes(os.environ.get("OKTA_OAUTH2_SCOPES", "openid profile"))

# Signs the session cookie. Random per process if unset: restarts log everyone out.
SESSION_SECRET_KEY = os.environ.get("SESSION_SECRET_KEY") or secrets.token_urlsafe(32)
SESSION_COOKIE_NAME = "okta-self-hosted-session-store"

# "cache" keeps tokens server-side keyed by session id; "session" keeps them in the signed cookie
TOKEN_STORAGE = os.environ.get("TOKEN_STORAGE", "cache").strip().lower()

TOKEN_TTL_SECONDS = int(os.environ.get("TOKEN_TTL_SECONDS", "3600"))
CACHE_SWEEP_INTERVAL_SECONDS = int(os.environ.get("CACHE_SWEEP_INTERVAL_SECONDS", "300"))

# Every call to the provider is bounded by this
HTTP_TIMEOUT_SECONDS = 30.0

JWKS_CACHE_SECONDS = int(os.environ.get("JWKS_CACHE_SECONDS", "300"))
CLOCK_SKEW_SECONDS = int(os.environ.get("CLOCK_SKEW_SECONDS", "60"))

DEBUG = _env_bool("DEBUG")

HOST = os.environ.get("HOST", "localhost")
PORT = int(os.environ.get("PORT", "8000"))


@dataclass(frozen=True)
class ProviderConfig:
    issuer: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: tuple[str, ...]

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def base_url(self) -> str:
        """Scheme and host of the issuer; the hosted sign-in surface loads from here."""
        parts = urlparse(self.issuer)
        return f"{parts.scheme}://{parts.hostname}"


def provider_config() -> ProviderConfig:
    return ProviderConfig(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        scopes=SCOPES,
    )
