"""
On-the-fly ZIP archives of Drive folders and file lists.

stream_zip turns a generator of members into archive bytes as the response
iterator pulls them; each member's data is the Drive download read through
iter_upstream, so a slow client slows the upstream reads and no file is held
whole in memory. Members are ZIP_64 because Drive sizes are not trusted to fit
the 32-bit format.

Folder walks use a worklist: listing calls run on a bounded thread pool while
the single consumer (the response iterator) emits members in the order their
folders finish listing.
"""
import logging
import stat
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Iterator

from fastapi.responses import StreamingResponse
from stream_zip import ZIP_64, stream_zip

from config import ARCHIVE_LIST_WORKERS, MAX_ARCHIVE_FILES, MAX_ARCHIVE_FOLDERS, STREAM_BUFFER_BYTES
from errors import NotAFolder, ScanLimitExceeded, StreamAborted
from services.drive_client import DriveClient, RemoteFileRef
from services.range_stream import content_disposition, iter_upstream

logger = logging.getLogger(__name__)

MULTI_ARCHIVE_NAME = "download.zip"

MEMBER_MODE = stat.S_IFREG | 0o644


def entry_path(prefix: str, name: str) -> str:
    """Archive path for a Drive item; separators in names cannot create folders."""
    safe = name.replace("/", "_").replace("\\", "_")
    if safe in ("", ".", ".."):
        safe = "_"
    return f"{prefix}/{safe}" if prefix else safe


def unique_path(path: str, used: set[str]) -> str:
    """
    Drive allows siblings with the same name; a ZIP extractor would let the
    later one overwrite the earlier. Repeats become "name (1).ext", "name (2).ext".
    """
    candidate = path
    if candidate in used:
        head, sep, name = path.rpartition("/")
        stem, dot, ext = name.rpartition(".")
        if not stem:
            stem, dot, ext = name, "", ""
        n = 1
        while candidate in used:
            candidate = f"{head}{sep}{stem} ({n}){dot}{ext}"
            n += 1
    used.add(candidate)
    return candidate


class ArchiveAssembler:
    def __init__(
        self,
        client: DriveClient,
        *,
        workers: int = ARCHIVE_LIST_WORKERS,
        max_folders: int = MAX_ARCHIVE_FOLDERS,
        max_files: int = MAX_ARCHIVE_FILES,
    ):
        self._client = client
        self._workers = workers
        self._max_folders = max_folders
        self._max_files = max_files

    # --- Responses ---

    def build_folder_archive(self, folder_id: str) -> StreamingResponse:
        """
        ZIP of every file below folder_id, paths relative to it. The folder is
        checked before the response starts, so a bad id gets a JSON error.
        """
        root = self._client.get_file(folder_id)
        if not root.is_folder:
            raise NotAFolder("Not a folder")
        logger.info("Building archive of folder %s (%s)", root.name, root.id)
        return self._response(self._walk(root), f"{root.name}.zip")

    def build_multi_archive(self, file_ids: list[str]) -> StreamingResponse:
        """
        Flat ZIP of the given files. Metadata for every id is resolved before
        the response starts; folder ids are skipped.
        """
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            refs = list(pool.map(self._client.get_file, file_ids))
        files = [ref for ref in refs if not ref.is_folder]
        skipped = len(refs) - len(files)
        if skipped:
            logger.info("Skipping %d folder(s) in multi-file archive", skipped)
        return self._response(((ref, entry_path("", ref.name)) for ref in files), MULTI_ARCHIVE_NAME)

    def _response(self, entries: Iterator[tuple[RemoteFileRef, str]], filename: str) -> StreamingResponse:
        return StreamingResponse(
            self._iter_archive(entries, filename),
            media_type="application/zip",
            headers={"Content-Disposition": content_disposition(filename)},
        )

    # --- Assembly ---

    def _iter_archive(self, entries: Iterator[tuple[RemoteFileRef, str]], label: str) -> Iterator[bytes]:
        """
        Yield archive bytes for each (file, path) entry. An error from a member
        stops stream_zip before the central directory, so the client gets a
        truncated, invalid ZIP rather than a complete-looking one.
        """
        members = self._members(entries)
        zipped = stream_zip(members, chunk_size=STREAM_BUFFER_BYTES)
        sent = 0
        try:
            for chunk in zipped:
                sent += len(chunk)
                yield chunk
            logger.info("Archive %s complete, %d bytes", label, sent)
        except GeneratorExit:
            logger.info("Archive %s abandoned by client after %d bytes", label, sent)
            raise
        except StreamAborted as e:
            logger.error("Archive %s aborted after %d bytes: %s", label, sent, e)
            raise
        except Exception as e:
            logger.error("Archive %s aborted after %d bytes: %s", label, sent, e)
            raise StreamAborted(f"Archive {label} aborted: {e}") from e
        finally:
            zipped.close()
            members.close()

    def _members(self, entries: Iterator[tuple[RemoteFileRef, str]]):
        """stream_zip member tuples; closing this closes the open download and the walk."""
        used: set[str] = set()
        content = None
        try:
            for ref, path in entries:
                content = self._content(ref)
                yield unique_path(path, used), datetime.now(), MEMBER_MODE, ZIP_64, content
        finally:
            if content is not None:
                content.close()
            entries.close()

    def _content(self, ref: RemoteFileRef) -> Iterator[bytes]:
        # Opened on first read, so only one download is in flight at a time
        upstream = self._client.open_content(ref.id)
        yield from iter_upstream(upstream, limit=ref.size)

    # --- Traversal ---

    def _walk(self, root: RemoteFileRef) -> Iterator[tuple[RemoteFileRef, str]]:
        """
        Yield (file, relative path) for every file below root. Each folder is
        listed exactly once even if Drive reports it under several parents.
        Raises ScanLimitExceeded past MAX_ARCHIVE_FOLDERS or MAX_ARCHIVE_FILES.
        """
        pool = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="archive-list")
        try:
            pending = {pool.submit(self._client.list_children, root.id): ""}
            seen = {root.id}
            files = 0
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    prefix = pending.pop(future)
                    for child in future.result():
                        path = entry_path(prefix, child.name)
                        if child.is_folder:
                            if child.id in seen:
                                continue
                            if len(seen) >= self._max_folders:
                                raise ScanLimitExceeded(
                                    f"Scan limit exceeded: max {self._max_folders} folders"
                                )
                            seen.add(child.id)
                            pending[pool.submit(self._client.list_children, child.id)] = path
                            continue
                        files += 1
                        if files > self._max_files:
                            raise ScanLimitExceeded(
                                f"Scan limit exceeded: max {self._max_files} files"
                            )
                        yield child, path
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
