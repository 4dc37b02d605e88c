"""
File records swept by the maintenance tasks.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hubjobs.infra.database import Base, UTCDateTime, utcnow

TEMP_FILES_CATEGORY = "temp_files"
QUARANTINED_SCAN_STATUS = "quarantined"


class FileMetadata(Base):
    """Metadata of one stored upload."""

    __tablename__ = "file_metadata"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    path: Mapped[str] = mapped_column(Text, nullable=False, comment="Storage key")
    original_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    checksum: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    uploaded_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)

    # Set by storage optimization
    is_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_file_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    duplicate_detected_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class VirusScanResult(Base):
    """Outcome of scanning one file."""

    __tablename__ = "virus_scan_results"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    file_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, comment="clean|infected|quarantined|error"
    )
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    scanned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class FileAccessLog(Base):
    """One download or view of a file."""

    __tablename__ = "file_access_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    file_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("file_metadata.id", ondelete="CASCADE"), nullable=False, index=True
    )
    accessed_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
