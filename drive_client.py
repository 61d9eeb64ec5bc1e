from typing import Any, AsyncIterator, Dict, List, Optional
import json, logging, secrets
import httpx
from settings import Settings
from credentials import Credential, CredentialStore
from google_oauth import refresh_access_token

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
DEFAULT_LIST_FIELDS = "files(name, id)"


class NotAuthorizedError(RuntimeError):
    pass


async def _multipart_related(boundary: str, metadata: Dict[str, Any], mime_type: str, body: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Yield a multipart/related upload body: JSON metadata, then the media bytes as they arrive."""
    yield f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode()
    yield json.dumps(metadata).encode()
    yield f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode()
    async for chunk in body:
        yield chunk
    yield f"\r\n--{boundary}--\r\n".encode()


class DriveClient:
    def __init__(self, settings: Settings, credentials: CredentialStore, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.api = settings.DRIVE_API_BASE.rstrip('/')
        self.upload_api = settings.DRIVE_UPLOAD_BASE.rstrip('/')
        # Held by reference: whatever the callback stores is used on the next call
        self.credentials = credentials
        self._transport = transport

    async def _refresh(self, credential: Credential) -> Credential:
        return await refresh_access_token(self.settings, credential, transport=self._transport)

    async def _authed(self) -> Dict[str, str]:
        cred = await self.credentials.fresh(self._refresh)
        if cred is None:
            raise NotAuthorizedError("Not authorized with Google yet. Visit /auth/google to authorize.")
        return {"Authorization": f"Bearer {cred.access_token}"}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        headers.update(await self._authed())
        async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT, transport=self._transport) as client:
            resp = await client.request(method, url, headers=headers, **kwargs)
            resp.raise_for_status()
            return resp

    async def list_files(self, page_size: int = DEFAULT_PAGE_SIZE, fields: str = DEFAULT_LIST_FIELDS) -> List[Dict[str, Any]]:
        # First page only
        params = {"pageSize": str(page_size), "fields": fields}
        resp = await self._request("GET", f"{self.api}/files", params=params)
        return resp.json().get("files", [])

    async def create_file(self, name: str, mime_type: str, body: AsyncIterator[bytes]) -> Dict[str, Any]:
        boundary = secrets.token_hex(16)
        metadata = {"name": name, "mimeType": mime_type}
        resp = await self._request(
            "POST",
            f"{self.upload_api}/files",
            params={"uploadType": "multipart", "fields": "id"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=_multipart_related(boundary, metadata, mime_type, body),
        )
        data = resp.json()
        logger.info(f"Uploaded {name!r} as {data.get('id')}")
        return data
