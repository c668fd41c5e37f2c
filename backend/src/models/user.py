"""User model - owner of bookmarks, collections and tags."""
from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from models.bookmark import Bookmark
    from models.collection import Collection


class User(Base, TimestampMixin):
    """
    User model.

    Accounts are managed outside the pipeline; the row only exists here so
    bookmarks, collections and tags have an owner to reference.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    bookmarks: Mapped[list["Bookmark"]] = relationship(back_populates="owner")
    collections: Mapped[list["Collection"]] = relationship(back_populates="owner")
