"""
PKCE (RFC 7636) plus state and nonce generation for sign-in initiation.
S256 only. All randomness comes from the OS entropy source via secrets.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from dataclasses import dataclass

from embedded_signin.errors import RandomSourceError

CHALLENGE_METHOD = "S256"

# 86 bytes -> 115 chars base64url, inside RFC 7636's 43..128
_VERIFIER_BYTES = 86
_STATE_BYTES = 16
_NONCE_BYTES = 32

_SESSION_KEYS = ("pkce_code_verifier", "pkce_code_challenge", "pkce_code_challenge_method")


def _random_bytes(n: int) -> bytes:
    try:
        return secrets.token_bytes(n)
    except (NotImplementedError, OSError) as e:
        raise RandomSourceError(f"entropy source unavailable: {e}") from e


def _b64url(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def compute_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


@dataclass(frozen=True)
class PKCEData:
    code_verifier: str
    code_challenge: str
    code_challenge_method: str = CHALLENGE_METHOD

    def to_session(self, session) -> None:
        session["pkce_code_verifier"] = self.code_verifier
        session["pkce_code_challenge"] = self.code_challenge
        session["pkce_code_challenge_method"] = self.code_challenge_method

    @classmethod
    def from_session(cls, session) -> "PKCEData | None":
        """PKCE data stored by a previous initiation, or None if any field is missing or empty."""
        values = [session.get(k) for k in _SESSION_KEYS]
        if not all(isinstance(v, str) and v for v in values):
            return None
        return cls(*values)

    @staticmethod
    def clear_session(session) -> None:
        for k in _SESSION_KEYS:
            session.pop(k, None)


def generate_pkce() -> PKCEData:
    """Generate code_verifier and its S256 code_challenge."""
    code_verifier = _b64url(_random_bytes(_VERIFIER_BYTES))
    return PKCEData(code_verifier=code_verifier, code_challenge=compute_challenge(code_verifier))


def generate_state() -> str:
    """Opaque value binding the callback to this browser's initiation (CSRF)."""
    return _random_bytes(_STATE_BYTES).hex()


def generate_nonce() -> str:
    """Random value bound into the ID token to stop replay."""
    return _b64url(_random_bytes(_NONCE_BYTES))
