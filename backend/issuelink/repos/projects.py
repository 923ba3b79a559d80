from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from issuelink.models.project import IssueBoard, Project


def get_project_by_repo(db: Session, repo_full_name: str) -> Project | None:
    stmt = select(Project).where(Project.repo_full_name == repo_full_name)
    return db.execute(stmt).scalars().first()


def get_project_for_board(db: Session, *, source: str, board_id: str) -> Project | None:
    stmt = (
        select(Project)
        .join(IssueBoard, IssueBoard.project_id == Project.id)
        .where(IssueBoard.source == source, IssueBoard.original_board_id == board_id)
    )
    return db.execute(stmt).scalars().first()


def resolve_project(db: Session, *, provider: str, board_id: str | None) -> Project | None:
    """Route an inbound event to its Project.

    GitHub events name the repository directly; tracker events name a board
    that an IssueBoard row maps onto a Project.
    """

    if not board_id:
        return None
    if provider == "github":
        return get_project_by_repo(db, board_id)
    return get_project_for_board(db, source=provider, board_id=board_id)


def create_project(db: Session, *, repo_full_name: str, name: str = "") -> Project:
    project = Project(repo_full_name=repo_full_name, name=name or repo_full_name)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def add_issue_board(
    db: Session,
    *,
    project_id: uuid.UUID,
    source: str,
    original_board_id: str,
    board_url: str | None = None,
) -> IssueBoard:
    board = IssueBoard(project_id=project_id, source=source, original_board_id=original_board_id, board_url=board_url)
    db.add(board)
    db.commit()
    db.refresh(board)
    return board
