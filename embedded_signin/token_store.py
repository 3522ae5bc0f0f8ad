"""
Where a browser session's tokens live after a successful login.
Two stores behind one interface: server-side cache keyed by session id (default) or the signed session cookie.
Tokens never reach the browser in the cache mode; only the session id does.
"""
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from embedded_signin.errors import ExchangeError
from embedded_signin.token_cache import DEFAULT_TTL, TokenCache, cache_key

logger = logging.getLogger(__name__)

ID_TOKEN = "id_token"
ACCESS_TOKEN = "access_token"

_SESSION_ID_KEY = "session_id"
_SESSION_EXPIRES_KEY = "tokens_expire_at"


def session_id(session) -> str:
    """Opaque id of this browser session, created on first use."""
    sid = session.get(_SESSION_ID_KEY)
    if not sid:
        sid = secrets.token_hex(16)
        session[_SESSION_ID_KEY] = sid
    return sid


def rotate_session_id(session) -> str:
    """Give the session a new id so a cookie copied before login can't ride on the login."""
    sid = secrets.token_hex(16)
    session[_SESSION_ID_KEY] = sid
    return sid


@dataclass
class TokenSet:
    id_token: str
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    scope: str = ""

    @classmethod
    def from_response(cls, data: dict) -> "TokenSet":
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError) as e:
            raise ExchangeError("invalid_response", "Token endpoint returned a non-numeric expires_in", status_code=502) from e
        return cls(
            id_token=data.get("id_token") or "",
            access_token=data.get("access_token") or "",
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            scope=data.get("scope") or "",
        )


class TokenStore(ABC):
    @abstractmethod
    def save(self, session, tokens: TokenSet) -> None: ...

    @abstractmethod
    def id_token(self, session) -> str | None: ...

    @abstractmethod
    def access_token(self, session) -> str | None: ...

    @abstractmethod
    def clear(self, session) -> None:
        """Forget this session's tokens only."""


class CacheTokenStore(TokenStore):
    def __init__(self, cache: TokenCache, ttl: float = DEFAULT_TTL):
        self.cache = cache
        self.ttl = ttl

    def save(self, session, tokens: TokenSet) -> None:
        sid = session_id(session)
        self.cache.put(cache_key(sid, ID_TOKEN), tokens.id_token, self.ttl)
        self.cache.put(cache_key(sid, ACCESS_TOKEN), tokens.access_token, self.ttl)

    def _get(self, session, kind: str) -> str | None:
        sid = session.get(_SESSION_ID_KEY)
        if not sid:
            return None
        return self.cache.get(cache_key(sid, kind)) or None

    def id_token(self, session) -> str | None:
        return self._get(session, ID_TOKEN)

    def access_token(self, session) -> str | None:
        return self._get(session, ACCESS_TOKEN)

    def clear(self, session) -> None:
        sid = session.get(_SESSION_ID_KEY)
        if sid:
            removed = self.cache.flush_session(sid)
            logger.debug("Evicted %d cached tokens for session", removed)


class SessionTokenStore(TokenStore):
    """Tokens in the signed cookie itself, with a wall-clock expiry since the cookie outlives the process."""

    def __init__(self, ttl: float = DEFAULT_TTL):
        self.ttl = ttl

    def save(self, session, tokens: TokenSet) -> None:
        session_id(session)
        session[ID_TOKEN] = tokens.id_token
        session[ACCESS_TOKEN] = tokens.access_token
        session[_SESSION_EXPIRES_KEY] = time.time() + self.ttl

    def _get(self, session, kind: str) -> str | None:
        expires_at = session.get(_SESSION_EXPIRES_KEY)
        if expires_at is None or time.time() >= expires_at:
            return None
        return session.get(kind) or None

    def id_token(self, session) -> str | None:
        return self._get(session, ID_TOKEN)

    def access_token(self, session) -> str | None:
        return self._get(session, ACCESS_TOKEN)

    def clear(self, session) -> None:
        for k in (ID_TOKEN, ACCESS_TOKEN, _SESSION_EXPIRES_KEY):
            session.pop(k, None)


def build_token_store(kind: str, cache: TokenCache, ttl: float = DEFAULT_TTL) -> TokenStore:
    if kind == "cache":
        return CacheTokenStore(cache, ttl)
    if kind == "session":
        return SessionTokenStore(ttl)
    raise ValueError(f"Unknown token storage {kind!r}; expected 'cache' or 'session'")
