from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


class LibraryStatus(str, Enum):
    owned = "owned"
    pending = "pending"
    completed = "completed"


class LibraryEntry(SQLModel, table=True):
    __tablename__ = "user_library"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_user_library_user_book"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    book_id: int = Field(foreign_key="book.id", index=True)

    status: LibraryStatus = Field(default=LibraryStatus.owned)
    progress: float = Field(default=0)

    # purchase that granted access, if any
    purchase_id: Optional[str] = Field(default=None, foreign_key="purchases.id")

    added_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
