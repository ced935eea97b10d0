# microauth/repositories/user_repo.py
from __future__ import annotations
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from microauth.domain.sqlalchemy_models import User


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.scalars(select(User).where(User.email == email).limit(1)).first()


def lock_user(db: Session, user_id: int) -> Optional[User]:
    """Row lock on the user; serializes per-user membership rewrites (no-op on SQLite)."""
    return db.scalars(select(User).where(User.id == user_id).with_for_update()).first()


def create_user(db: Session, email: str, password_hash: str,
                first_name: str | None = None, last_name: str | None = None) -> User:
    user = User(email=email, password_hash=password_hash, first_name=first_name, last_name=last_name)
    db.add(user)
    db.flush()
    return user


def set_password_hash(db: Session, user: User, password_hash: str) -> None:
    user.password_hash = password_hash
    db.flush()
