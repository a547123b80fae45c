from typing import Protocol

from sqlalchemy.orm import Session

from hostel.models.user import User


class UserDirectory(Protocol):
    """Lookup into the external identity service."""

    def user_exists(self, db: Session, user_id: int) -> bool: ...


class DatabaseUserDirectory:
    """
    Resolves users against the local `users` mirror table.
    Deactivated accounts are treated as unknown.
    """

    def user_exists(self, db: Session, user_id: int) -> bool:
        return db.query(User.id).filter(User.id == user_id, User.isActive.is_(True)).first() is not None
