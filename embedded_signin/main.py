"""
Embedded sign-in client web app.
GET /, /login, /login/callback, /profile; POST /logout. Port 8000 by default.
"""
import html
import json
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from embedded_signin import config
from embedded_signin.errors import AuthFlowError
from embedded_signin.flow import FlowController, FlowStatus, SignInContext
from embedded_signin.interaction import InteractionClient
from embedded_signin.token_cache import TokenCache
from embedded_signin.token_store import build_token_store
from embedded_signin.verifier import IdentityTokenVerifier

logger = logging.getLogger(__name__)

WIDGET_VERSION = "7.14.0"

token_cache = TokenCache(
    default_ttl=config.TOKEN_TTL_SECONDS,
    sweep_interval=config.CACHE_SWEEP_INTERVAL_SECONDS,
)


def create_controller() -> FlowController:
    provider = config.provider_config()
    return FlowController(
        config=provider,
        client=InteractionClient(provider),
        verifier=IdentityTokenVerifier(provider.issuer, provider.client_id),
        token_store=build_token_store(config.TOKEN_STORAGE, token_cache, config.TOKEN_TTL_SECONDS),
    )


_controller = create_controller()


def get_controller() -> FlowController:
    return _controller


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Sweep expired tokens in the background while the app runs."""
    token_cache.start()
    try:
        yield
    finally:
        token_cache.stop()


app = FastAPI(title="Embedded Sign-In Client", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET_KEY,
    session_cookie=config.SESSION_COOKIE_NAME,
    same_site="lax",
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    level = logging.INFO if config.DEBUG else logging.DEBUG
    logger.log(level, "%s: %s", request.method, request.url.path)
    return await call_next(request)


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
{body}
</body>
</html>""",
        status_code=status_code,
    )


@app.exception_handler(AuthFlowError)
async def auth_flow_error(request: Request, exc: AuthFlowError):
    """Flow failures end this request only; the user can start over from /login."""
    logger.warning("%s: %s", type(exc).__name__, exc.message)
    return _page(
        exc.title,
        f"""  <h1>{html.escape(exc.title)}</h1>
  <p>{html.escape(exc.message)}</p>
  <p><a href="/login">Try again</a> | <a href="/">Home</a></p>""",
        status_code=exc.status_code,
    )


def _nav(authenticated: bool) -> str:
    if authenticated:
        return """  <p><a href="/">Home</a> | <a href="/profile">Profile</a></p>
  <form method="post" action="/logout"><button type="submit">Log out</button></form>"""
    return """  <p><a href="/">Home</a> | <a href="/login">Log in</a></p>"""


def _claims_table(claims: dict) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(str(k))}</td><td>{html.escape(str(v))}</td></tr>" for k, v in sorted(claims.items())
    )
    return f"<table>{rows}</table>"


def _sign_in_page(ctx: SignInContext) -> HTMLResponse:
    # JSON inside <script>: neutralise "</" so a value can't close the tag
    widget_json = json.dumps(ctx.widget_config()).replace("</", "<\\/")
    response = _page(
        "Sign in",
        f"""  <h1>Sign in</h1>
  <div id="okta-signin-widget-container"></div>
  <script src="https://global.oktacdn.com/okta-signin-widget/{WIDGET_VERSION}/js/okta-sign-in.min.js" type="text/javascript"></script>
  <script type="text/javascript">
    var config = {widget_json};
    new OktaSignIn(config).showSignInAndRedirect({{el: '#okta-signin-widget-container'}});
  </script>
{_nav(False)}""",
    )
    response.headers["Cache-Control"] = "no-cache"
    return response


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "embedded_signin"}


@app.get("/", response_class=HTMLResponse)
def home(request: Request, controller: FlowController = Depends(get_controller)):
    authenticated = controller.is_authenticated(request.session)
    if not authenticated:
        return _page("Home", f"  <h1>Embedded Sign-In</h1>\n  <p>You are not logged in.</p>\n{_nav(False)}")
    claims = controller.profile(request.session)
    name = claims.get("name") or claims.get("preferred_username") or "user"
    table = f"  {_claims_table(claims)}\n" if claims else ""
    return _page("Home", f"  <h1>Welcome, {html.escape(str(name))}</h1>\n{table}{_nav(True)}")


@app.get("/login", response_class=HTMLResponse)
def login(request: Request, controller: FlowController = Depends(get_controller)):
    """Start a login: PKCE + state + nonce, interaction handle, then hand over to the sign-in widget."""
    ctx = controller.initiate(request.session)
    return _sign_in_page(ctx)


@app.get("/login/callback")
def login_callback(
    request: Request,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    interaction_code: str | None = None,
    controller: FlowController = Depends(get_controller),
):
    result = controller.handle_callback(
        request.session,
        state=state,
        error=error,
        interaction_code=interaction_code,
        error_description=error_description,
    )
    if result.status == FlowStatus.INTERACTION_REQUIRED:
        return _sign_in_page(result.context)
    return RedirectResponse(url="/", status_code=302)


@app.get("/profile", response_class=HTMLResponse)
def profile(request: Request, controller: FlowController = Depends(get_controller)):
    authenticated = controller.is_authenticated(request.session)
    claims = controller.profile(request.session) if authenticated else {}
    if not claims:
        return _page("Profile", f"  <h1>Profile</h1>\n  <p>No profile. Log in first.</p>\n{_nav(authenticated)}")
    return _page("Profile", f"  <h1>Profile</h1>\n  {_claims_table(claims)}\n{_nav(True)}")


@app.post("/logout")
def logout(request: Request, controller: FlowController = Depends(get_controller)):
    controller.logout(request.session)
    return RedirectResponse(url="/", status_code=302)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG if config.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "embedded_signin.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
    )
