"""Data models for the drive proxy backend."""
from sqlalchemy import Column, DateTime, Integer, Text

from database import Base

CREDENTIAL_ROW_ID = 1


class StoredCredential(Base):
    """
    Single-row table for the process-wide Google OAuth credential.

    - id: always CREDENTIAL_ROW_ID; the backend serves one Drive account.
    - encrypted_credential: Fernet-encrypted JSON of the access token,
      refresh token and expiry (crypto.encrypt / crypto.decrypt).
    - updated_at: UTC time of the last save, for operators.
    """
    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True)
    encrypted_credential = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
