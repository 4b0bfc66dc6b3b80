"""
Drive client: the only code that talks to the Google Drive v3 API.

Offers metadata lookup, child listing and content streaming (optionally a byte
range) for one access token. Every call carries an explicit timeout, and
requests errors are translated to the proxy's error taxonomy so routers never
see a raw requests exception.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from config import DRIVE_API_URL, DRIVE_DOWNLOAD_TIMEOUT, DRIVE_REQUEST_TIMEOUT
from errors import AuthExpired, ProviderError

logger = logging.getLogger(__name__)

FOLDER_MIME = "application/vnd.google-apps.folder"

FILE_FIELDS = "id, name, mimeType, size, parents"


@dataclass(frozen=True)
class RemoteFileRef:
    """Per-request projection of a Drive file or folder; never cached."""

    id: str
    name: str
    mime_type: str
    size: int | None = None
    parents: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME

    @classmethod
    def from_api(cls, data: dict) -> "RemoteFileRef":
        size_raw = data.get("size")
        try:
            size = int(size_raw) if size_raw is not None else None
        except (TypeError, ValueError):
            size = None
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            mime_type=data.get("mimeType") or "application/octet-stream",
            size=size,
            parents=tuple(data.get("parents") or ()),
        )


def _raise_for_provider(resp: requests.Response, what: str) -> None:
    """Map a non-2xx Drive response to AuthExpired or ProviderError."""
    if resp.ok:
        return
    status = resp.status_code
    resp.close()
    if status == 401:
        raise AuthExpired("Google Drive authentication expired. Please re-authenticate.")
    transient = status == 429 or status >= 500
    raise ProviderError(
        f"Google Drive {what} failed with status {status}",
        transient=transient,
        provider_status=status,
    )


class DriveClient:
    def __init__(self, access_token: str):
        self._access_token = access_token

    def _request(self, method: str, url: str, what: str, **kwargs: Any) -> requests.Response:
        """Call Drive with timeout and bearer token; raises on HTTP errors."""
        headers = {"Authorization": f"Bearer {self._access_token}"}
        if "headers" in kwargs:
            headers.update(kwargs.pop("headers"))
        kwargs.setdefault("timeout", DRIVE_REQUEST_TIMEOUT)
        try:
            resp = requests.request(method, url, headers=headers, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ProviderError(f"Google Drive {what} failed: {e}", transient=True) from e
        except requests.RequestException as e:
            raise ProviderError(f"Google Drive {what} failed: {e}") from e
        _raise_for_provider(resp, what)
        return resp

    def get_file(self, file_id: str) -> RemoteFileRef:
        resp = self._request(
            "GET",
            f"{DRIVE_API_URL}/{file_id}",
            "metadata lookup",
            params={"fields": FILE_FIELDS, "supportsAllDrives": "true"},
        )
        return RemoteFileRef.from_api(resp.json())

    def list_children(self, folder_id: str) -> list[RemoteFileRef]:
        """List every non-trashed child of folder_id, following all pages."""
        children: list[RemoteFileRef] = []
        page_token = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed = false",
                "fields": f"nextPageToken, files({FILE_FIELDS})",
                "orderBy": "folder,name",
                "pageSize": 1000,
                "supportsAllDrives": "true",
                "includeItemsFromAllDrives": "true",
            }
            if page_token:
                params["pageToken"] = page_token
            resp = self._request("GET", DRIVE_API_URL, "folder listing", params=params)
            page = resp.json() or {}
            children.extend(RemoteFileRef.from_api(f) for f in page.get("files", []) if f.get("id"))
            page_token = page.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Listed %d children of folder %s", len(children), folder_id)
        return children

    def open_content(
        self,
        file_id: str,
        start: int | None = None,
        end: int | None = None,
    ) -> requests.Response:
        """
        Open the file body as a streaming response. With start/end, Drive is
        asked for that inclusive byte window. The caller must close the response.
        """
        headers = {}
        if start is not None:
            headers["Range"] = f"bytes={start}-{'' if end is None else end}"
        return self._request(
            "GET",
            f"{DRIVE_API_URL}/{file_id}",
            "content download",
            params={"alt": "media", "supportsAllDrives": "true"},
            headers=headers,
            stream=True,
            timeout=DRIVE_DOWNLOAD_TIMEOUT,
        )
