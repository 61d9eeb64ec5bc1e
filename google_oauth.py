import base64, hashlib, logging, os, time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from credentials import Credential
from settings import Settings

logger = logging.getLogger(__name__)


class OAuthError(Exception):
    """Google rejected a token request, or the request never reached Google."""


# ===== PKCE helpers =====
def generate_code_verifier() -> str:
    return base64.urlsafe_b64encode(os.urandom(32)).decode().rstrip("=")

def code_challenge_from_verifier(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")

def build_authorize_url(settings: Settings, state: str, code_challenge: str) -> str:
    params = {
        "client_id": settings.CLIENT_ID,
        "redirect_uri": settings.REDIRECT_URI,
        "response_type": "code",
        "scope": settings.OAUTH_SCOPE,
        # offline access is what makes Google issue a refresh token
        "access_type": "offline",
        "include_granted_scopes": "true",
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{settings.GOOGLE_AUTH_URL}?{urlencode(params)}"


def _credential_from_response(tok: Dict[str, Any], previous: Optional[Credential] = None) -> Credential:
    access_token = tok.get("access_token")
    if not access_token or not isinstance(access_token, str):
        raise OAuthError("Token response did not include an access token")
    refresh_token = tok.get("refresh_token")
    scope = tok.get("scope")
    expires_in = tok.get("expires_in")
    try:
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise TypeError("refresh_token is not a string")
        scopes = tuple(scope.split()) if scope else (previous.scopes if previous else ())
        expires_at = time.time() + int(expires_in) if expires_in is not None else None
    except (TypeError, ValueError, AttributeError) as e:
        raise OAuthError(f"Malformed token response: {e}") from e
    return Credential(
        access_token=access_token,
        # Google only sends a refresh token on the first consent; refreshes reuse the old one
        refresh_token=refresh_token or (previous.refresh_token if previous else None),
        scopes=scopes,
        expires_at=expires_at,
    )


async def _token_request(settings: Settings, data: Dict[str, str], transport: Optional[httpx.AsyncBaseTransport]) -> Dict[str, Any]:
    data = {
        **data,
        "client_id": settings.CLIENT_ID,
        "client_secret": settings.CLIENT_SECRET,
    }
    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, transport=transport) as client:
            resp = await client.post(settings.GOOGLE_TOKEN_URL, data=data)
    except httpx.HTTPError as e:
        raise OAuthError(str(e) or e.__class__.__name__) from e

    if resp.is_error:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        error = body.get("error") or f"HTTP {resp.status_code}"
        description = body.get("error_description")
        raise OAuthError(f"{error}: {description}" if description else error)
    try:
        tok = resp.json()
    except ValueError as e:
        raise OAuthError("Token endpoint returned a non-JSON response") from e
    if not isinstance(tok, dict):
        raise OAuthError("Token endpoint returned an unexpected response")
    return tok


async def exchange_code_for_tokens(settings: Settings, code: str, code_verifier: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> Credential:
    """Exchange auth code for access+refresh tokens."""
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.REDIRECT_URI,
    }
    if code_verifier:
        data["code_verifier"] = code_verifier
    tok = await _token_request(settings, data, transport)
    logger.info(f"Tokens received (refresh token: {'yes' if tok.get('refresh_token') else 'no'})")
    return _credential_from_response(tok)


async def refresh_access_token(settings: Settings, credential: Credential, transport: Optional[httpx.AsyncBaseTransport] = None) -> Credential:
    """Trade the refresh token for a new access token."""
    if not credential.refresh_token:
        raise OAuthError("No refresh token available")
    data = {
        "grant_type": "refresh_token",
        "refresh_token": credential.refresh_token,
    }
    tok = await _token_request(settings, data, transport)
    logger.info("Access token refreshed")
    return _credential_from_response(tok, previous=credential)
