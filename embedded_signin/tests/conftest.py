"""
Shared fixtures: provider config, an RSA key + JWKS served to PyJWKClient, ID token factory,
and a fake identity provider standing in for httpx.post / httpx.get.
"""
import time
from unittest.mock import patch

import httpx
import jwt
from jwt import PyJWKClient
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from embedded_signin.config import ProviderConfig

ISSUER = "https://idp.example.com/oauth2/default"
CLIENT_ID = "test-client"
CLIENT_SECRET = "test-secret"
KID = "test-key"


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    s = jwt.utils.base64url_encode(value.to_bytes(length, "big"))
    return s.decode("utf-8") if isinstance(s, bytes) else s


@pytest.fixture
def provider_config():
    return ProviderConfig(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri="http://testserver/login/callback",
        scopes=("openid", "profile"),
    )


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def jwks(rsa_key):
    pub = rsa_key.public_key().public_numbers()
    return {
        "keys": [
            {
                "kty": "RSA",
                "kid": KID,
                "alg": "RS256",
                "use": "sig",
                "n": _int_to_b64url(pub.n),
                "e": _int_to_b64url(pub.e),
            }
        ]
    }


@pytest.fixture
def serve_jwks(jwks):
    """Every PyJWKClient key-set fetch answers with our JWKS instead of going to the network."""
    with patch.object(PyJWKClient, "fetch_data", return_value=jwks):
        yield


@pytest.fixture
def make_id_token(rsa_key):
    def _make(*, sub="00u1", nonce=None, aud=CLIENT_ID, iss=ISSUER, exp_in=3600, iat_offset=0, key=None, kid=KID, **extra):
        now = int(time.time())
        payload = {"sub": sub, "iss": iss, "aud": aud, "iat": now + iat_offset, "exp": now + exp_in, **extra}
        if nonce is not None:
            payload["nonce"] = nonce
        return jwt.encode(payload, key or rsa_key, algorithm="RS256", headers={"kid": kid})

    return _make


class FakeProvider:
    """
    Answers interact / token / revoke / userinfo like the provider would. Records every call.
    token_response may be a dict or a callable(form_data) -> dict, evaluated per request.
    """

    def __init__(self):
        self.calls: list[tuple[str, str, dict]] = []
        self.interaction_handle = "ih-123"
        self.token_status = 200
        self.token_response = None
        self.revoke_status = 200
        self.userinfo = {"sub": "00u1", "name": "Jane Doe", "email": "jane@example.com"}
        self.raise_on: dict[str, Exception] = {}

    def calls_to(self, operation: str) -> list[dict]:
        return [data for _, url, data in self.calls if url.endswith("/" + operation)]

    def _op(self, url: str) -> str:
        return url.rsplit("/", 1)[-1]

    def post(self, url, data=None, headers=None, timeout=None):
        op = self._op(url)
        self.calls.append(("POST", url, dict(data or {})))
        if op in self.raise_on:
            raise self.raise_on[op]
        if op == "interact":
            return httpx.Response(200, json={"interaction_handle": self.interaction_handle})
        if op == "token":
            body = self.token_response(data) if callable(self.token_response) else self.token_response
            return httpx.Response(self.token_status, json=body or {})
        if op == "revoke":
            return httpx.Response(self.revoke_status, text="")
        return httpx.Response(404, json={"error": "not_found"})

    def get(self, url, headers=None, timeout=None):
        op = self._op(url)
        self.calls.append(("GET", url, dict(headers or {})))
        if op in self.raise_on:
            raise self.raise_on[op]
        if op == "userinfo":
            return httpx.Response(200, json=self.userinfo)
        return httpx.Response(404, json={"error": "not_found"})


@pytest.fixture
def fake_provider():
    provider = FakeProvider()
    with patch("embedded_signin.interaction.httpx.post", side_effect=provider.post), patch(
        "embedded_signin.interaction.httpx.get", side_effect=provider.get
    ):
        yield provider
