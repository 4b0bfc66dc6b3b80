"""
Google OAuth 2.0 credential lifecycle and the gate in front of every Drive call.

- /auth/google redirects to Google with a CSRF state stored in a short-lived cookie.
- /auth/google/callback validates state, exchanges the code for tokens and saves
  them as the process-wide credential.
- /api/google-drive/status reports whether a credential is stored;
  /api/google-drive/clear forgets it.
- TokenRefresher exchanges the refresh token for a new access token. A failed
  refresh clears the credential so the operator re-authorizes instead of the
  server retrying a dead refresh token forever.
- require_drive_client is the gate dependency: it rejects requests without a
  credential, refreshes proactively on every request, and hands the route a
  DriveClient bound to the fresh access token.
"""
import logging
import secrets
from datetime import datetime, timedelta, UTC
from urllib.parse import urlencode

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from config import (
    CREDENTIAL_CLEAR_ENABLED,
    GOOGLE_AUTH_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_DRIVE_SCOPE,
    GOOGLE_REDIRECT_URI,
    GOOGLE_TOKEN_URL,
    GOOGLE_TOKENS,
    IS_PRODUCTION,
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_MAX_AGE,
    OAUTH_TIMEOUT,
    SECURE_COOKIES,
    TOKEN_STORAGE,
)
from errors import AuthExpired, AuthRequired
from services.drive_client import DriveClient
from token_store import Credential, DatabaseTokenBackend, EnvTokenBackend, TokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")
status_router = APIRouter(prefix="/api/google-drive")


def build_token_store() -> TokenStore:
    if TOKEN_STORAGE == "env":
        return TokenStore(EnvTokenBackend(GOOGLE_TOKENS))
    return TokenStore(DatabaseTokenBackend())


# Loaded by main at startup
token_store = build_token_store()


def get_token_store() -> TokenStore:
    return token_store


class TokenExchangeError(Exception):
    """Google's token endpoint was unreachable or refused the grant."""

    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)


def _token_request(grant: dict) -> dict:
    """POST a grant to Google's token endpoint; returns the JSON body with an access_token."""
    try:
        resp = requests.post(
            GOOGLE_TOKEN_URL,
            data={"client_id": GOOGLE_CLIENT_ID, "client_secret": GOOGLE_CLIENT_SECRET, **grant},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=OAUTH_TIMEOUT,
        )
        data = resp.json()
    except requests.RequestException as e:
        raise TokenExchangeError(f"token endpoint unreachable: {e}") from e
    except ValueError as e:
        raise TokenExchangeError("token endpoint returned a non-JSON body") from e
    if "error" in data:
        raise TokenExchangeError(data.get("error_description") or data["error"])
    if not data.get("access_token"):
        raise TokenExchangeError("token endpoint did not return access_token")
    return data


def _expiry(data: dict) -> datetime:
    return datetime.now(UTC) + timedelta(seconds=int(data.get("expires_in", 3600)))


class TokenRefresher:
    def __init__(self, store: TokenStore):
        self._store = store

    def refresh(self) -> bool:
        """
        Exchange the stored refresh token for a new access token. Returns True
        on success. Without a refresh token nothing is sent and False is
        returned; any other failure clears the stored credential. The result
        is saved only if the credential was not cleared or replaced meanwhile.
        """
        credential = self._store.current()
        if credential is None or not credential.refresh_token:
            logger.info("No refresh token available")
            return False
        try:
            data = _token_request({
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            })
        except TokenExchangeError as e:
            logger.error("Error refreshing Google token: %s", e.msg)
            self._store.save_if_current(credential, None)
            return False
        refreshed = credential.refreshed(data["access_token"], _expiry(data), data.get("refresh_token"))
        if not self._store.save_if_current(credential, refreshed):
            # Cleared or replaced while the exchange was in flight; the newer value wins
            logger.info("Credential changed during refresh; discarding refreshed token")
            return self._store.has_valid_access()
        logger.info("Google token refreshed")
        return True

    def exchange_code(self, code: str) -> Credential:
        """Authorization-code grant for the OAuth callback; saves and returns the credential."""
        data = _token_request({
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": GOOGLE_REDIRECT_URI,
        })
        credential = Credential(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expiry=_expiry(data),
        )
        self._store.save(credential)
        return credential


def get_token_refresher(store: TokenStore = Depends(get_token_store)) -> TokenRefresher:
    return TokenRefresher(store)


def require_drive_client(
    store: TokenStore = Depends(get_token_store),
    refresher: TokenRefresher = Depends(get_token_refresher),
) -> DriveClient:
    """
    FastAPI dependency gating every Drive-backed route.
    Raises AuthRequired when no credential is stored and AuthExpired when the
    credential is gone after the proactive refresh; both tell the front end to
    restart the authorization flow.
    """
    if not store.has_valid_access():
        raise AuthRequired("Google Drive not authenticated. Please authenticate first.")
    refresher.refresh()
    credential = store.current()
    if credential is None or not credential.access_token:
        raise AuthExpired("Google Drive authentication expired. Please re-authenticate.")
    return DriveClient(credential.access_token)


# Cookie flags: HttpOnly (no JS access), SameSite=Lax (CSRF mitigation)
def _cookie_kwargs(secure: bool = False) -> dict:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "path": "/",
    }


@router.get("/google")
def google_login():
    """
    Redirect to Google OAuth consent for full Drive access. offline access and
    forced consent make Google return a refresh token every time.
    """
    state = secrets.token_urlsafe(32)
    query = urlencode({
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": GOOGLE_DRIVE_SCOPE,
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    })
    redirect = RedirectResponse(url=f"{GOOGLE_AUTH_URL}?{query}")
    redirect.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )
    return redirect


_SUCCESS_PAGE = """<html>
  <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">
    <h2>Google Drive Authentication Successful!</h2>
    {body}
    <p>You can now close this window and return to the application.</p>
  </body>
</html>"""

_PRODUCTION_NOTE = """<p><strong>Important:</strong> copy the GOOGLE_TOKENS value from the
    service logs into the environment and redeploy, or you will need to
    authenticate again after the next restart.</p>"""

_DEVELOPMENT_NOTE = "<p>Your authentication has been saved locally.</p>"


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    refresher: TokenRefresher = Depends(get_token_refresher),
):
    """
    Handle redirect from Google. Validates the state cookie (CSRF), exchanges
    the code for tokens and stores them as the process-wide credential.
    """
    if error:
        raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    state_cookie = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
    if not state_cookie or not secrets.compare_digest(state, state_cookie):
        raise HTTPException(status_code=400, detail="Invalid or expired state; please try again")

    try:
        refresher.exchange_code(code)
    except TokenExchangeError as e:
        raise HTTPException(status_code=400, detail=f"Token exchange failed: {e.msg}")
    logger.info("Google Drive authorized")

    note = _PRODUCTION_NOTE if IS_PRODUCTION and TOKEN_STORAGE == "env" else _DEVELOPMENT_NOTE
    response = HTMLResponse(_SUCCESS_PAGE.format(body=note))
    response.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
    return response


@status_router.get("/status")
def drive_status(store: TokenStore = Depends(get_token_store)):
    return {"authenticated": store.has_valid_access()}


@status_router.post("/clear")
def drive_clear(store: TokenStore = Depends(get_token_store)):
    """
    Forget the stored credential (e.g. when it is corrupted). Unauthenticated,
    so it answers 403 unless CREDENTIAL_CLEAR_ENABLED is set.
    """
    if not CREDENTIAL_CLEAR_ENABLED:
        raise HTTPException(status_code=403, detail="Clearing the Google Drive credential is disabled")
    store.save(None)
    logger.info("Google Drive credential cleared")
    return {"success": True, "message": "Google Drive authentication cleared"}
