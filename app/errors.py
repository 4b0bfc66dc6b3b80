"""
Error taxonomy for the drive proxy.

Each error carries the HTTP status it maps to and whether the front end must
restart the Google authorization flow. main.py turns them into JSON bodies of
the form {"error": ..., "needsAuth": true}.
"""


class DriveProxyError(Exception):
    """Base class for errors surfaced to the client as structured JSON."""

    status_code = 500
    needs_auth = False

    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)

    def to_content(self) -> dict:
        content = {"error": self.msg}
        if self.needs_auth:
            content["needsAuth"] = True
        return content


class AuthRequired(DriveProxyError):
    """No credential is stored; the operator must authorize Drive access."""

    status_code = 401
    needs_auth = True


class AuthExpired(DriveProxyError):
    """The credential was rejected or could not be refreshed."""

    status_code = 401
    needs_auth = True


class RangeNotSatisfiable(DriveProxyError):
    """Requested byte window lies outside the file; answered with an empty 416."""

    status_code = 416

    def __init__(self, size: int, msg: str = "Requested range not satisfiable"):
        self.size = size
        super().__init__(msg)


class MalformedRange(RangeNotSatisfiable):
    """Range header is syntactically invalid (unit, multiple ranges, bad end)."""


class UnsupportedMediaType(DriveProxyError):
    status_code = 400


class NotAFolder(DriveProxyError):
    status_code = 400


class FolderNotConfigured(DriveProxyError):
    status_code = 400


class ProviderError(DriveProxyError):
    """
    Google Drive call failed. transient=True for timeouts, connection errors,
    rate limiting and 5xx; those map to 503, everything else to 502 (or the
    provider's 404).
    """

    def __init__(self, msg: str, *, transient: bool = False, provider_status: int | None = None):
        self.transient = transient
        self.provider_status = provider_status
        super().__init__(msg)

    @property
    def status_code(self) -> int:
        if self.transient:
            return 503
        if self.provider_status == 404:
            return 404
        return 502


class StreamAborted(Exception):
    """
    A failure after the response started streaming. Not a DriveProxyError:
    the status line is already sent, so main's catch-all handler only logs it
    and the server drops the connection.
    """


class ScanLimitExceeded(StreamAborted):
    """An archive walk went past MAX_ARCHIVE_FOLDERS or MAX_ARCHIVE_FILES."""
