"""
Sign-in flow: initiate -> hosted sign-in surface -> callback -> exchange -> verify -> tokens stored.

Flow values (state, nonce, PKCE, interaction handle) live in the caller's cookie session, never on the
controller, so concurrent logins from different browsers can't see each other's values.
They are single-use: the callback discards them whether the exchange succeeds or fails.
"""
import enum
import logging
import secrets
from dataclasses import dataclass, field

from embedded_signin.config import ProviderConfig
from embedded_signin.errors import ExchangeError, MalformedCallbackError, StateMismatchError
from embedded_signin.interaction import InteractionClient
from embedded_signin.pkce import PKCEData, generate_nonce, generate_pkce, generate_state
from embedded_signin.token_store import TokenStore, rotate_session_id, session_id
from embedded_signin.verifier import IdentityTokenVerifier

logger = logging.getLogger(__name__)

INTERACTION_REQUIRED = "interaction_required"

_STATE_KEY = "flow_state"
_NONCE_KEY = "flow_nonce"
_HANDLE_KEY = "interaction_handle"


class FlowStatus(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    FLOW_INITIATED = "flow_initiated"
    AWAITING_CALLBACK = "awaiting_callback"
    INTERACTION_REQUIRED = "interaction_required"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass
class FlowState:
    state: str
    nonce: str
    pkce: PKCEData
    interaction_handle: str

    def save(self, session) -> None:
        self.pkce.to_session(session)
        session[_STATE_KEY] = self.state
        session[_NONCE_KEY] = self.nonce
        session[_HANDLE_KEY] = self.interaction_handle

    @classmethod
    def load(cls, session) -> "FlowState | None":
        state = session.get(_STATE_KEY)
        if not state:
            return None
        pkce = PKCEData.from_session(session)
        if pkce is None:
            return None
        return cls(
            state=state,
            nonce=session.get(_NONCE_KEY) or "",
            pkce=pkce,
            interaction_handle=session.get(_HANDLE_KEY) or "",
        )

    @staticmethod
    def discard(session) -> None:
        for k in (_STATE_KEY, _NONCE_KEY, _HANDLE_KEY):
            session.pop(k, None)
        PKCEData.clear_session(session)


@dataclass
class SignInContext:
    """Everything the hosted sign-in surface needs to resume the provider interaction."""

    base_url: str
    client_id: str
    issuer: str
    redirect_uri: str
    scopes: list[str]
    state: str
    nonce: str
    interaction_handle: str
    code_challenge: str
    code_challenge_method: str

    def widget_config(self) -> dict:
        return {
            "baseUrl": self.base_url,
            "clientId": self.client_id,
            "redirectUri": self.redirect_uri,
            "useInteractionCodeFlow": True,
            "state": self.state,
            "authParams": {
                "issuer": self.issuer,
                "scopes": self.scopes,
                "nonce": self.nonce,
            },
            "interactionHandle": self.interaction_handle,
            "codeChallenge": self.code_challenge,
            "codeChallengeMethod": self.code_challenge_method,
        }


@dataclass
class CallbackResult:
    status: FlowStatus
    context: SignInContext | None = None
    claims: dict = field(default_factory=dict)


class FlowController:
    def __init__(
        self,
        config: ProviderConfig,
        client: InteractionClient,
        verifier: IdentityTokenVerifier,
        token_store: TokenStore,
    ):
        self.config = config
        self.client = client
        self.verifier = verifier
        self.token_store = token_store

    def _context(self, flow: FlowState) -> SignInContext:
        return SignInContext(
            base_url=self.config.base_url,
            client_id=self.config.client_id,
            issuer=self.config.issuer,
            redirect_uri=self.config.redirect_uri,
            scopes=list(self.config.scopes),
            state=flow.state,
            nonce=flow.nonce,
            interaction_handle=flow.interaction_handle,
            code_challenge=flow.pkce.code_challenge,
            code_challenge_method=flow.pkce.code_challenge_method,
        )

    def initiate(self, session) -> SignInContext:
        """Start (or restart) a login for this browser and get an interaction handle for it."""
        session_id(session)
        pkce = PKCEData.from_session(session)
        if pkce is None:
            pkce = generate_pkce()
            pkce.to_session(session)
        logger.debug("Flow %s", FlowStatus.FLOW_INITIATED.value)
        state = generate_state()
        nonce = generate_nonce()

        handle = self.client.interact(
            scope=self.config.scope,
            code_challenge=pkce.code_challenge,
            redirect_uri=self.config.redirect_uri,
            state=state,
            nonce=nonce,
        )
        flow = FlowState(state=state, nonce=nonce, pkce=pkce, interaction_handle=handle)
        flow.save(session)
        logger.info("Sign-in flow initiated")
        return self._context(flow)

    def handle_callback(
        self,
        session,
        state: str | None,
        error: str | None = None,
        interaction_code: str | None = None,
        error_description: str | None = None,
    ) -> CallbackResult:
        flow = FlowState.load(session)
        stored_state = session.get(_STATE_KEY)
        if not stored_state or not state or not secrets.compare_digest(state.encode(), stored_state.encode()):
            logger.warning("Callback state did not match the stored state")
            raise StateMismatchError("The state was not as expected. Please try logging in again.")

        if error == INTERACTION_REQUIRED:
            if flow is None:
                FlowState.discard(session)
                raise MalformedCallbackError("Could not get PKCE data from session")
            # Resume the same interaction; nothing is regenerated
            return CallbackResult(status=FlowStatus.INTERACTION_REQUIRED, context=self._context(flow))

        # From here the flow values are spent, success or not
        FlowState.discard(session)

        if error:
            logger.warning("Provider returned error on callback: %s", error)
            raise ExchangeError(error, error_description)
        if not interaction_code:
            raise MalformedCallbackError("The interaction_code was not returned or is not accessible")
        if flow is None:
            raise MalformedCallbackError("Could not get PKCE data from session")

        logger.debug("Flow %s", FlowStatus.EXCHANGING.value)
        tokens = self.client.exchange(
            interaction_code=interaction_code,
            code_verifier=flow.pkce.code_verifier,
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
        )
        claims = self.verifier.verify(tokens.id_token, nonce=flow.nonce or None)

        # Anything keyed by the pre-login id goes; tokens are stored under a fresh id
        self.token_store.clear(session)
        rotate_session_id(session)
        self.token_store.save(session, tokens)
        logger.info("Login succeeded for sub=%s", claims.get("sub"))
        return CallbackResult(status=FlowStatus.AUTHENTICATED, claims=claims)

    def is_authenticated(self, session) -> bool:
        return bool(self.token_store.id_token(session))

    def status(self, session) -> FlowStatus:
        if self.is_authenticated(session):
            return FlowStatus.AUTHENTICATED
        if session.get(_STATE_KEY):
            return FlowStatus.AWAITING_CALLBACK
        return FlowStatus.UNAUTHENTICATED

    def profile(self, session) -> dict:
        access_token = self.token_store.access_token(session)
        if not access_token:
            return {}
        return self.client.userinfo(access_token)

    def logout(self, session) -> None:
        """Revoke the access token if we have one, then forget this session's tokens (and only this session's)."""
        access_token = self.token_store.access_token(session)
        if access_token:
            self.client.revoke(
                access_token,
                "access_token",
                client_id=self.config.client_id,
                client_secret=self.config.client_secret,
            )
        self.token_store.clear(session)
        FlowState.discard(session)
        logger.info("Logged out")
