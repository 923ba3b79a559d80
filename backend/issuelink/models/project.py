from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from issuelink.core.time import utcnow
from issuelink.db.base import Base


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repo_full_name: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class IssueBoard(Base):
    """Links an external tracker board (Jira project key, Linear team, Zendesk account) to a Project."""

    __tablename__ = "issue_boards"
    __table_args__ = (UniqueConstraint("source", "original_board_id", name="uq_issue_boards_source_board"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("projects.id"), index=True, nullable=False)

    source: Mapped[str] = mapped_column(String(32), nullable=False)  # jira|linear|zendesk
    original_board_id: Mapped[str] = mapped_column(String(255), nullable=False)
    board_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
