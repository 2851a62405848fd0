"""FileRecord model - file metadata plus the per-strategy processing matrix.

Actual bytes live in the storage backend named by ``source``; ``text`` records
carry their extracted content inline.
"""
import uuid
from sqlalchemy import String, BigInteger, Integer, Boolean, Text, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from attachments.models.base import Base, TimestampMixin, UserMixin


class FileRecord(Base, TimestampMixin, UserMixin):
    __tablename__ = "files"

    file_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    temp_file_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    mimetype: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    filepath: Mapped[str] = mapped_column(String(1000), nullable=False)
    source: Mapped[str] = mapped_column(String(30), default="local")
    context: Mapped[str] = mapped_column(String(30), default="message_attachment")
    category: Mapped[str] = mapped_column(String(20), default="unknown")
    embedded: Mapped[bool] = mapped_column(Boolean, default=False)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    usage: Mapped[int] = mapped_column(Integer, default=0)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # strategies matrix, fileIdentifier, tool_resource, extraction stats
    file_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
