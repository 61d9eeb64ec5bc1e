# app.py
import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, File, UploadFile
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from settings import Settings, load_settings
from credentials import CredentialStore, PendingFlows
from drive_client import DriveClient
from google_oauth import (
    OAuthError,
    generate_code_verifier,
    code_challenge_from_verifier,
    build_authorize_url,
    exchange_code_for_tokens,
)

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 256 * 1024


async def _iter_upload(file: UploadFile, chunk_size: int = UPLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        yield chunk


def create_app(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Build the app around one credential slot shared by the OAuth routes and the Drive client.

    ``transport`` is handed to every outbound httpx client (tests pass a mock).
    """
    app = FastAPI(title="Google Drive OAuth Proxy")

    credentials = CredentialStore()
    flows = PendingFlows()
    drive = DriveClient(settings, credentials, transport=transport)

    app.state.settings = settings
    app.state.credentials = credentials
    app.state.flows = flows
    app.state.drive = drive

    @app.get("/")
    async def root():
        return HTMLResponse('Server is running! <a href="/auth/google">Login with Google</a>')

    @app.get("/healthz")
    async def healthz():
        return {"ok": True, "authorized": credentials.current is not None}

    # ----- OAuth endpoints -----

    @app.get("/auth/google")
    async def auth_google():
        verifier = generate_code_verifier()
        state = flows.start(verifier)
        url = build_authorize_url(settings, state, code_challenge_from_verifier(verifier))
        return RedirectResponse(url, status_code=302)

    @app.get("/auth/google/callback")
    async def auth_google_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None):
        logger.info(f"Authorization code received: {bool(code)}")
        if not code:
            if error:
                logger.warning(f"Google returned an error instead of a code: {error}")
                return PlainTextResponse(f"No authorization code received ({error})", status_code=400)
            return PlainTextResponse("No authorization code received", status_code=400)

        verifier = flows.consume(state)
        if verifier is None:
            logger.warning("Callback state did not match any pending authorization flow")
            return PlainTextResponse("State mismatch", status_code=400)

        try:
            credential = await exchange_code_for_tokens(settings, code, verifier, transport=transport)
        except OAuthError as e:
            logger.error(f"Token exchange failed: {e}")
            return PlainTextResponse(f"Authentication failed: {e}", status_code=500)
        except Exception as e:
            logger.exception("Unexpected error during token exchange")
            return PlainTextResponse(f"Authentication failed: {e}", status_code=500)

        await credentials.set(credential)
        logger.info("Credentials set successfully")
        return PlainTextResponse("Authentication successful!")

    # ----- Drive proxy endpoints -----

    @app.get("/files")
    async def list_files():
        try:
            files = await drive.list_files()
        except Exception:
            logger.exception("Error listing files")
            return JSONResponse({"error": "Failed to list files"}, status_code=500)
        return files

    @app.post("/upload")
    async def upload(file: Optional[UploadFile] = File(None)):
        if file is None:
            return JSONResponse({"error": "No file uploaded"}, status_code=400)
        try:
            data = await drive.create_file(
                name=file.filename or "untitled",
                mime_type=file.content_type or "application/octet-stream",
                body=_iter_upload(file),
            )
        except Exception:
            logger.exception("Error uploading file")
            return JSONResponse({"error": "Failed to upload file"}, status_code=500)
        finally:
            await file.close()
        return {"fileId": data.get("id")}

    return app


def main():
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    settings = load_settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL)

    app = create_app(settings)
    logger.info(f"Server is running on http://localhost:{settings.PORT}")
    logger.info(f"Visit http://localhost:{settings.PORT}/auth/google to start authentication")
    uvicorn.run(app, host=settings.SERVER_HOST, port=settings.PORT)


# Entry point (local dev)
if __name__ == "__main__":
    main()
