"""Import all models so SQLAlchemy metadata knows about them."""
from attachments.models.base import Base
from attachments.models.file_record import FileRecord
from attachments.models.agent import Agent, AgentResourceFile

__all__ = ["Base", "FileRecord", "Agent", "AgentResourceFile"]
