"""Downstream issue/todo store.

The ingestion pipeline only ever calls ``TodoStore.apply``; the todo tables
themselves belong to the rest of the dashboard.
"""

from __future__ import annotations

import uuid
from typing import Protocol

from sqlalchemy.orm import Session

from issuelink.providers.base import ISSUE_CREATED, ISSUE_DELETED, ISSUE_UPDATED, LABEL_CHANGED, DomainEvent
from issuelink.repos.todos import get_or_create_todo, touch


class TodoStore(Protocol):
    def apply(self, *, project_id: uuid.UUID, event: DomainEvent) -> None:
        ...


class SqlTodoStore:
    def __init__(self, db: Session):
        self.db = db

    def apply(self, *, project_id: uuid.UUID, event: DomainEvent) -> None:
        if event.external_issue_id is None:
            raise ValueError("event has no external issue id")
        todo = get_or_create_todo(
            self.db,
            project_id=project_id,
            source=event.provider,
            external_issue_id=event.external_issue_id,
        )
        if event.kind in (ISSUE_CREATED, ISSUE_UPDATED):
            todo.title = event.title or todo.title
            todo.description = event.description or todo.description
            todo.labels = list(event.labels)
            todo.is_archived = False
        elif event.kind == LABEL_CHANGED:
            todo.labels = list(event.labels)
        elif event.kind == ISSUE_DELETED:
            todo.is_archived = True
        else:
            raise ValueError(f"unsupported event kind: {event.kind}")
        touch(todo)
        # Committed by the caller together with the delivery outcome.
        self.db.flush()
