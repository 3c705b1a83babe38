from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from sqlmodel import Session, select

from bookpay.errors import NotFoundError, ValidationError
from bookpay.models.book import Book
from bookpay.models.bundle import Bundle, BundleBook
from bookpay.models.purchase import ItemType


@dataclass
class ResolvedItem:
    item_type: ItemType
    id: int
    title: str
    price: Decimal
    is_free: bool
    book_ids: List[int] = field(default_factory=list)


def parse_item_type(item_type) -> ItemType:
    try:
        return ItemType(item_type)
    except ValueError:
        raise ValidationError('Invalid item type. Must be "book" or "bundle"')


def bundle_book_ids(session: Session, bundle_id: int) -> List[int]:
    return list(session.exec(
        select(BundleBook.book_id)
        .where(BundleBook.bundle_id == bundle_id)
        .order_by(BundleBook.book_id)
    ).all())


def resolve_item(session: Session, item_type, item_id: int) -> ResolvedItem:
    """Look up a purchasable item and its current price."""
    item_type = parse_item_type(item_type)

    if item_type == ItemType.book:
        book = session.get(Book, item_id)
        if not book:
            raise NotFoundError("Book not found")
        price = Decimal(book.price or 0)
        return ResolvedItem(
            item_type=item_type,
            id=book.id,
            title=book.title,
            price=price,
            is_free=book.is_free or price <= 0,
            book_ids=[book.id],
        )

    bundle = session.get(Bundle, item_id)
    if not bundle:
        raise NotFoundError("Bundle not found")
    price = Decimal(bundle.price or 0)
    return ResolvedItem(
        item_type=item_type,
        id=bundle.id,
        title=bundle.title,
        price=price,
        is_free=price <= 0,
        book_ids=bundle_book_ids(session, bundle.id),
    )
