"""Agent models - only the parts the file pipeline reads and writes.

Agent CRUD lives elsewhere; here we need the enabled tools (for dual-routing)
and the tool-resource associations files are attached to.
"""
import uuid
from sqlalchemy import String, Integer, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from attachments.models.base import Base, TimestampMixin, UserMixin


class Agent(Base, TimestampMixin, UserMixin):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    tools: Mapped[list] = mapped_column(JSON, default=list)


class AgentResourceFile(Base):
    __tablename__ = "agent_resource_files"
    __table_args__ = (UniqueConstraint("agent_id", "tool_resource", "file_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(String(100), index=True)
    tool_resource: Mapped[str] = mapped_column(String(30))
    file_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
