"""
Process-wide OAuth credential store.

One Google credential serves every request (single Drive account). The store
keeps it in memory behind a lock and persists every change through a backend:

- DatabaseTokenBackend: encrypted row in the credentials table (development).
- EnvTokenBackend: GOOGLE_TOKENS read once at startup; refreshed credentials
  are written to the log for the operator to copy, because the process may
  restart on ephemeral storage.

Readers always see a whole Credential object (immutable); save() replaces it.
"""
import json
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, UTC

from crypto import InvalidToken, decrypt, encrypt
from database import SessionLocal, session_scope
from models import CREDENTIAL_ROW_ID, StoredCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """OAuth token pair; expiry is UTC or None when the provider gave none."""

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Credential requires a non-empty access_token")

    def refreshed(
        self, access_token: str, expiry: datetime | None, refresh_token: str | None = None
    ) -> "Credential":
        """New access token; the refresh token is kept unless the provider rotated it."""
        return replace(
            self,
            access_token=access_token,
            expiry=expiry,
            refresh_token=refresh_token or self.refresh_token,
        )

    def to_json(self) -> str:
        return json.dumps({
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
        })

    @classmethod
    def from_json(cls, raw: str) -> "Credential":
        data = json.loads(raw)
        expiry = data.get("expiry")
        return cls(
            access_token=data.get("access_token") or "",
            refresh_token=data.get("refresh_token"),
            expiry=datetime.fromisoformat(expiry) if expiry else None,
        )


class DatabaseTokenBackend:
    """Persist the credential as a single encrypted row."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def read(self) -> str | None:
        with session_scope(self._session_factory) as db:
            row = db.get(StoredCredential, CREDENTIAL_ROW_ID)
            return row.encrypted_credential if row else None

    def write(self, encrypted: str | None) -> None:
        with session_scope(self._session_factory) as db:
            row = db.get(StoredCredential, CREDENTIAL_ROW_ID)
            if encrypted is None:
                if row is not None:
                    db.delete(row)
            elif row is None:
                db.add(StoredCredential(
                    id=CREDENTIAL_ROW_ID,
                    encrypted_credential=encrypted,
                    updated_at=datetime.now(UTC),
                ))
            else:
                row.encrypted_credential = encrypted
                row.updated_at = datetime.now(UTC)
        logger.info("Credential %s in database", "cleared" if encrypted is None else "saved")


class EnvTokenBackend:
    """
    Read-only GOOGLE_TOKENS value. Writes cannot persist, so they are emitted
    at WARNING level with the value the operator should set before redeploying.
    """

    def __init__(self, value: str | None):
        self._value = value

    def read(self) -> str | None:
        return self._value

    def write(self, encrypted: str | None) -> None:
        self._value = encrypted
        if encrypted is None:
            logger.warning(
                "Google Drive credential cleared. Remove GOOGLE_TOKENS from the "
                "environment and re-authorize at /auth/google."
            )
            return
        logger.warning(
            "Google Drive credential updated. Set this value as the GOOGLE_TOKENS "
            "environment variable and redeploy so it survives a restart:\n%s",
            encrypted,
        )


class TokenStore:
    def __init__(self, backend):
        self._backend = backend
        self._lock = threading.Lock()
        self._credential: Credential | None = None

    def load(self) -> Credential | None:
        """
        Restore the credential from the backend. Unreadable data (wrong key,
        bad JSON, empty access token) is logged and treated as no credential.
        """
        try:
            encrypted = self._backend.read()
            credential = Credential.from_json(decrypt(encrypted)) if encrypted else None
        except (InvalidToken, ValueError, TypeError) as e:
            logger.error("Could not load stored Google credential: %s", e)
            credential = None
        with self._lock:
            self._credential = credential
        if credential:
            logger.info("Google Drive credential loaded")
        else:
            logger.info("No Google Drive credential found; authorization required")
        return credential

    def save(self, credential: Credential | None) -> None:
        """Persist credential (None clears it), then publish it to readers."""
        encrypted = encrypt(credential.to_json()) if credential else None
        with self._lock:
            self._publish(credential, encrypted)

    def save_if_current(self, expected: Credential | None, credential: Credential | None) -> bool:
        """
        Save only if the stored credential is still `expected` (the same
        object). Returns False and changes nothing when another save got in
        first, e.g. a clear while a refresh was in flight.
        """
        encrypted = encrypt(credential.to_json()) if credential else None
        with self._lock:
            if self._credential is not expected:
                return False
            self._publish(credential, encrypted)
        return True

    def _publish(self, credential: Credential | None, encrypted: str | None) -> None:
        # Caller holds the lock
        try:
            self._backend.write(encrypted)
        except Exception:
            # Memory stays authoritative for this process when persistence fails
            logger.exception("Failed to persist Google credential")
        self._credential = credential

    def current(self) -> Credential | None:
        return self._credential

    def has_valid_access(self) -> bool:
        credential = self._credential
        return credential is not None and bool(credential.access_token)
