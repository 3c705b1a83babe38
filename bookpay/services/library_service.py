import logging
from datetime import datetime
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from bookpay.errors import DuplicateError, NotFoundError, ValidationError
from bookpay.models.book import Book
from bookpay.models.library import LibraryEntry, LibraryStatus

logger = logging.getLogger(__name__)


def list_library(session: Session, user_id: int) -> List[dict]:
    rows = session.exec(
        select(LibraryEntry, Book)
        .join(Book, Book.id == LibraryEntry.book_id)
        .where(LibraryEntry.user_id == user_id)
        .order_by(LibraryEntry.added_at.desc())
    ).all()

    return [
        {
            "book_id": book.id,
            "title": book.title,
            "author": book.author,
            "cover_image": book.cover_image,
            "status": entry.status,
            "progress": entry.progress,
            "purchase_id": entry.purchase_id,
            "added_at": entry.added_at,
        }
        for entry, book in rows
    ]


def add_free_book(session: Session, user_id: int, book_id: int) -> LibraryEntry:
    """Direct grant for free books; paid books only arrive through a purchase."""
    book = session.get(Book, book_id)
    if not book:
        raise NotFoundError("Book not found")
    if not (book.is_free or (book.price or 0) <= 0):
        raise ValidationError("This book is not free")

    entry = LibraryEntry(user_id=user_id, book_id=book_id, status=LibraryStatus.owned, progress=0)
    session.add(entry)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise DuplicateError("Book is already in your library")

    session.refresh(entry)
    logger.info(f"Free book {book_id} added to library of user {user_id}")
    return entry


def update_progress(session: Session, user_id: int, book_id: int, progress: float) -> LibraryEntry:
    if progress is None or progress < 0 or progress > 100:
        raise ValidationError("Progress must be between 0 and 100")

    entry = session.exec(
        select(LibraryEntry)
        .where(LibraryEntry.user_id == user_id)
        .where(LibraryEntry.book_id == book_id)
    ).first()
    if not entry or entry.status == LibraryStatus.pending:
        raise NotFoundError("Book is not in your library")

    entry.progress = progress
    if progress >= 100:
        entry.status = LibraryStatus.completed
    entry.updated_at = datetime.utcnow()
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry
