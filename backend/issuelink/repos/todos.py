from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuelink.core.time import utcnow
from issuelink.models.todo import Todo


def get_todo(db: Session, *, project_id: uuid.UUID, source: str, external_issue_id: str) -> Todo | None:
    stmt = select(Todo).where(
        Todo.project_id == project_id,
        Todo.source == source,
        Todo.external_issue_id == external_issue_id,
    )
    return db.execute(stmt).scalars().first()


def list_todos(db: Session, *, project_id: uuid.UUID) -> list[Todo]:
    stmt = select(Todo).where(Todo.project_id == project_id).order_by(Todo.created_at)
    return list(db.execute(stmt).scalars().all())


def get_or_create_todo(db: Session, *, project_id: uuid.UUID, source: str, external_issue_id: str) -> Todo:
    todo = get_todo(db, project_id=project_id, source=source, external_issue_id=external_issue_id)
    if todo is not None:
        return todo
    todo = Todo(project_id=project_id, source=source, external_issue_id=external_issue_id)
    db.add(todo)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = get_todo(db, project_id=project_id, source=source, external_issue_id=external_issue_id)
        assert existing is not None
        return existing
    return todo


def touch(todo: Todo) -> None:
    todo.updated_at = utcnow()
