from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuelink.models.user import User


def get_user_by_login(db: Session, login: str) -> User | None:
    stmt = select(User).where(User.login == login.lower())
    return db.execute(stmt).scalars().first()


def upsert_user(db: Session, *, login: str, name: str | None = None) -> User:
    user = get_user_by_login(db, login)
    if user is not None:
        if name and user.name != name:
            user.name = name
            db.commit()
        return user

    user = User(login=login.lower(), name=name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Two first sign-ins for the same login raced; use the winner.
        db.rollback()
        existing = get_user_by_login(db, login)
        assert existing is not None
        return existing
    db.refresh(user)
    return user
