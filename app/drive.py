"""
Drive router: HTTP endpoints for streaming, viewing and downloading Drive content.

Every route depends on require_drive_client, so it runs only with a freshly
refreshed credential. Business logic lives in services.range_stream and
services.archive; errors raised there before the response starts become JSON
bodies, errors after that abort the stream.
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from auth import require_drive_client
from config import GOOGLE_DRIVE_FOLDER_ID, MAX_DOWNLOAD_FILES
from errors import FolderNotConfigured, NotAFolder
from services.archive import ArchiveAssembler
from services.drive_client import DriveClient
from services.range_stream import RangeStreamProxy

router = APIRouter(prefix="/api")


@router.get("/stream/{file_id}")
def stream_video(
    file_id: str,
    range_header: str | None = Header(None, alias="Range"),
    client: DriveClient = Depends(require_drive_client),
):
    """Video playback with Range support (206 partial content, 416 when unsatisfiable)."""
    return RangeStreamProxy(client).stream(file_id, range_header)


@router.get("/view/{file_id}")
def view_image(file_id: str, client: DriveClient = Depends(require_drive_client)):
    """Whole image body, cacheable for an hour."""
    return RangeStreamProxy(client).view(file_id)


# Archive routes are declared before /download/{file_id} so "folder" and
# "multiple" are not taken as file ids.


@router.get("/download/folder")
def download_root_folder(client: DriveClient = Depends(require_drive_client)):
    """ZIP of the configured GOOGLE_DRIVE_FOLDER_ID tree."""
    if not GOOGLE_DRIVE_FOLDER_ID:
        raise FolderNotConfigured("Google Drive folder ID not configured")
    return ArchiveAssembler(client).build_folder_archive(GOOGLE_DRIVE_FOLDER_ID)


@router.get("/download/folder/{folder_id}")
def download_folder(folder_id: str, client: DriveClient = Depends(require_drive_client)):
    """ZIP of every file below folder_id, keeping the folder structure."""
    return ArchiveAssembler(client).build_folder_archive(folder_id)


@router.get("/download/multiple")
def download_multiple(
    file_ids: str | None = Query(None, alias="fileIds"),
    client: DriveClient = Depends(require_drive_client),
):
    """ZIP of a comma-separated list of file ids; folder ids are skipped."""
    ids = [fid.strip() for fid in (file_ids or "").split(",") if fid.strip()]
    if not ids:
        raise HTTPException(status_code=400, detail="File IDs are required")
    if len(ids) > MAX_DOWNLOAD_FILES:
        raise HTTPException(
            status_code=400,
            detail=f"At most {MAX_DOWNLOAD_FILES} files per request",
        )
    return ArchiveAssembler(client).build_multi_archive(ids)


@router.get("/download/{file_id}")
def download_file(file_id: str, client: DriveClient = Depends(require_drive_client)):
    """Whole file as an attachment."""
    return RangeStreamProxy(client).download(file_id)


@router.get("/files/{file_id}/share")
def share_file(file_id: str, request: Request, client: DriveClient = Depends(require_drive_client)):
    """Link that downloads the file through this backend."""
    ref = client.get_file(file_id)
    return {
        "id": ref.id,
        "name": ref.name,
        "mimeType": ref.mime_type,
        "shareableLink": str(request.url_for("download_file", file_id=file_id)),
    }


@router.get("/folders/{folder_id}/share")
def share_folder(folder_id: str, request: Request, client: DriveClient = Depends(require_drive_client)):
    """Link that downloads the folder as a ZIP through this backend."""
    ref = client.get_file(folder_id)
    if not ref.is_folder:
        raise NotAFolder("Not a folder")
    return {
        "id": ref.id,
        "name": ref.name,
        "mimeType": ref.mime_type,
        "shareableLink": str(request.url_for("download_folder", folder_id=folder_id)),
        "isFolder": True,
    }
