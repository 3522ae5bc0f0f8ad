"""
ID token verification via the issuer's JWKS.
Checks signature, iss, aud (our client_id), exp, iat and, when the caller issued one, nonce.
Any failure is a TokenVerificationError; callers must not treat the session as logged in.
"""
import logging
import secrets

import jwt
from jwt import PyJWKClient

from embedded_signin.config import CLOCK_SKEW_SECONDS, JWKS_CACHE_SECONDS
from embedded_signin.errors import TokenVerificationError
from embedded_signin.interaction import oauth_endpoint

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256"]
REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud"]


class IdentityTokenVerifier:
    def __init__(
        self,
        issuer: str,
        client_id: str,
        jwks_uri: str | None = None,
        leeway: int = CLOCK_SKEW_SECONDS,
    ):
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.jwks_uri = jwks_uri or oauth_endpoint(self.issuer, "keys")
        self.leeway = leeway
        self._jwks_client: PyJWKClient | None = None

    def get_jwks_client(self) -> PyJWKClient:
        # PyJWKClient caches the JWK set and refetches on unknown kid
        if self._jwks_client is None:
            self._jwks_client = PyJWKClient(
                uri=self.jwks_uri,
                cache_jwk_set=True,
                lifespan=JWKS_CACHE_SECONDS,
            )
        return self._jwks_client

    def verify(self, id_token: str, nonce: str | None = None) -> dict:
        """Return the ID token's claims or raise TokenVerificationError."""
        if not id_token:
            raise TokenVerificationError("missing id_token")

        try:
            signing_key = self.get_jwks_client().get_signing_key_from_jwt(id_token)
        except jwt.PyJWKClientError as e:
            logger.warning("No signing key for ID token: %s", e)
            raise TokenVerificationError("signing key unavailable") from e
        except jwt.DecodeError as e:
            raise TokenVerificationError("malformed token") from e

        try:
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=ALGORITHMS,
                audience=self.client_id,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenVerificationError("token expired") from e
        except jwt.InvalidAudienceError as e:
            raise TokenVerificationError("invalid audience") from e
        except jwt.InvalidIssuerError as e:
            raise TokenVerificationError("invalid issuer") from e
        except jwt.ImmatureSignatureError as e:
            raise TokenVerificationError("token issued in the future") from e
        except jwt.MissingRequiredClaimError as e:
            raise TokenVerificationError(f"missing claim {e.claim}") from e
        except jwt.InvalidSignatureError as e:
            raise TokenVerificationError("invalid signature") from e
        except jwt.InvalidTokenError as e:
            logger.debug("ID token rejected: %s", e)
            raise TokenVerificationError("invalid token") from e

        if nonce is not None:
            token_nonce = claims.get("nonce")
            if token_nonce is None:
                raise TokenVerificationError("missing nonce")
            if not secrets.compare_digest(str(token_nonce).encode(), nonce.encode()):
                raise TokenVerificationError("nonce mismatch")
        return claims
