"""Shared fixtures: app settings and a fake Google (OAuth + Drive) behind httpx.MockTransport."""

from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from settings import Settings

TOKEN_RESPONSES = {
    "valid": {
        "access_token": "ya29.valid",
        "refresh_token": "1//refresh-valid",
        "expires_in": 3599,
        "scope": "https://www.googleapis.com/auth/drive",
        "token_type": "Bearer",
    },
    "second": {
        "access_token": "ya29.second",
        "refresh_token": "1//refresh-second",
        "expires_in": 3599,
        "scope": "https://www.googleapis.com/auth/drive",
        "token_type": "Bearer",
    },
    # Already past its expiry, forces a refresh on first use
    "expired": {
        "access_token": "ya29.expired",
        "refresh_token": "1//refresh-expired",
        "expires_in": 0,
        "scope": "https://www.googleapis.com/auth/drive",
        "token_type": "Bearer",
    },
}


class FakeGoogle:
    """Minimal stand-in for the Google token endpoint and the Drive v3 API."""

    def __init__(self):
        self.requests = []
        self.token_requests = []
        self.drive_auth_headers = []
        self.files = [{"name": "a.txt", "id": "id-a"}, {"name": "b.pdf", "id": "id-b"}]
        self.upload_id = "file-123"
        self.drive_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return self._token(request)

        auth = request.headers.get("Authorization")
        if not auth:
            return httpx.Response(401, json={"error": {"code": 401, "message": "Login Required."}})
        self.drive_auth_headers.append(auth)
        if self.drive_status != 200:
            return httpx.Response(self.drive_status, json={"error": {"code": self.drive_status}})

        if request.url.path == "/drive/v3/files" and request.method == "GET":
            return httpx.Response(200, json={"files": self.files})
        if request.url.path == "/upload/drive/v3/files" and request.method == "POST":
            return httpx.Response(200, json={"id": self.upload_id})
        return httpx.Response(404, json={"error": {"code": 404}})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.token_requests.append(form)
        if form.get("grant_type") == "authorization_code":
            tok = TOKEN_RESPONSES.get(form.get("code"))
            if tok is None:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Malformed auth code."})
            return httpx.Response(200, json=tok)
        if form.get("grant_type") == "refresh_token":
            return httpx.Response(200, json={"access_token": "ya29.refreshed", "expires_in": 3599, "token_type": "Bearer"})
        return httpx.Response(400, json={"error": "unsupported_grant_type"})


@pytest.fixture
def settings():
    return Settings(
        CLIENT_ID="test-client-id.apps.googleusercontent.com",
        CLIENT_SECRET="test-client-secret",
        REDIRECT_URI="http://localhost:5000/auth/google/callback",
        _env_file=None,
    )


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def client(settings, google):
    app = create_app(settings, transport=httpx.MockTransport(google.handler))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def start_flow(client):
    """Start an authorization flow; returns the parsed query of the consent URL."""

    def _start():
        resp = client.get("/auth/google", follow_redirects=False)
        assert resp.status_code == 302
        return {k: v[0] for k, v in parse_qs(urlparse(resp.headers["location"]).query).items()}

    return _start


@pytest.fixture
def authorize(client, start_flow):
    """Run the whole browser round trip with the given code and return the callback response."""

    def _authorize(code: str = "valid"):
        params = start_flow()
        return client.get("/auth/google/callback", params={"code": code, "state": params["state"]})

    return _authorize
