"""
Calls to the identity provider's OAuth endpoints: interact, token (interaction_code grant), revoke, userinfo.
All requests are form-encoded or bearer GETs with a 30 second timeout.
"""
import logging

import httpx

from embedded_signin.config import HTTP_TIMEOUT_SECONDS, ProviderConfig
from embedded_signin.errors import ExchangeError, InteractionError, UpstreamTimeoutError
from embedded_signin.pkce import CHALLENGE_METHOD
from embedded_signin.token_store import TokenSet

logger = logging.getLogger(__name__)

_FORM_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/x-www-form-urlencoded",
}


def oauth_endpoint(issuer: str, operation: str) -> str:
    """
    Custom authorization servers (issuer .../oauth2/<id>) expose {issuer}/v1/<op>;
    the org server (bare org URL) exposes {issuer}/oauth2/v1/<op>.
    """
    issuer = issuer.rstrip("/")
    if "oauth2" in issuer:
        return f"{issuer}/v1/{operation}"
    return f"{issuer}/oauth2/v1/{operation}"


def _json_or_none(r: httpx.Response) -> dict | None:
    try:
        body = r.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class InteractionClient:
    def __init__(self, config: ProviderConfig, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.config = config
        self.timeout = timeout

    def endpoint(self, operation: str) -> str:
        return oauth_endpoint(self.config.issuer, operation)

    def interact(self, scope: str, code_challenge: str, redirect_uri: str, state: str, nonce: str | None = None) -> str:
        """Start a provider interaction; returns the interaction_handle the sign-in surface resumes."""
        data = {
            "client_id": self.config.client_id,
            "scope": scope,
            "code_challenge": code_challenge,
            "code_challenge_method": CHALLENGE_METHOD,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        # The ID token minted at the end of the interaction carries this nonce back
        if nonce:
            data["nonce"] = nonce
        try:
            r = httpx.post(
                self.endpoint("interact"),
                data=data,
                headers=_FORM_HEADERS,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Timed out requesting an interaction handle") from e
        except httpx.HTTPError as e:
            logger.warning("interact request failed: %s", e)
            raise InteractionError("Could not reach the identity provider") from e

        if not 200 <= r.status_code < 300:
            body = _json_or_none(r) or {}
            logger.warning("interact returned %s: %s", r.status_code, body.get("error_description") or body.get("error"))
            raise InteractionError(f"Identity provider rejected the interaction request ({r.status_code})")

        body = _json_or_none(r)
        handle = body.get("interaction_handle") if body else None
        if not handle:
            raise InteractionError("Identity provider response had no interaction_handle")
        return handle

    def exchange(self, interaction_code: str, code_verifier: str, client_id: str, client_secret: str) -> TokenSet:
        """
        Trade an interaction_code for tokens. The token endpoint can answer 200 with an error body,
        so the error field decides failure, not the status.
        """
        data = {
            "grant_type": "interaction_code",
            "interaction_code": interaction_code,
            "client_id": client_id,
            "code_verifier": code_verifier,
        }
        if client_secret:
            data["client_secret"] = client_secret
        try:
            r = httpx.post(self.endpoint("token"), data=data, headers=_FORM_HEADERS, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError("Timed out exchanging the interaction code") from e
        except httpx.HTTPError as e:
            logger.warning("token request failed: %s", e)
            raise ExchangeError("request_failed", "Could not reach the identity provider", status_code=502) from e

        body = _json_or_none(r)
        if body is None:
            raise ExchangeError("invalid_response", f"Token endpoint returned a non-JSON response ({r.status_code})", status_code=502)
        if body.get("error"):
            raise ExchangeError(body["error"], body.get("error_description"))
        if not 200 <= r.status_code < 300:
            raise ExchangeError("server_error", f"Token endpoint returned {r.status_code}", status_code=502)
        return TokenSet.from_response(body)

    def revoke(self, token: str, token_type_hint: str, client_id: str, client_secret: str) -> bool:
        """Best effort; logout goes ahead whatever happens here."""
        data = {"token": token, "token_type_hint": token_type_hint, "client_id": client_id}
        if client_secret:
            data["client_secret"] = client_secret
        try:
            r = httpx.post(self.endpoint("revoke"), data=data, headers=_FORM_HEADERS, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning("revoke request failed: %s", e)
            return False
        if not 200 <= r.status_code < 300:
            logger.warning("revoke error; status: %s, body: %s", r.status_code, r.text[:200])
            return False
        return True

    def userinfo(self, access_token: str) -> dict:
        """Claims for the token's subject, or {} if they can't be fetched."""
        try:
            r = httpx.get(
                self.endpoint("userinfo"),
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("userinfo request failed: %s", e)
            return {}
        if r.status_code != 200:
            logger.warning("userinfo returned %s", r.status_code)
            return {}
        return _json_or_none(r) or {}
