from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from bookpay.config import Settings, get_settings
from bookpay.database import build_engine, create_db_and_tables, get_session
from bookpay.dependencies.auth import Principal, PrincipalKind, Role
from bookpay.main import app
from bookpay.models.book import Book
from bookpay.models.bundle import Bundle, BundleBook
from bookpay.models.user import User
from bookpay.notifications import Notifier
from bookpay.services.purchase_workflow import PurchaseWorkflow
from bookpay.utils.token import create_access_token

BOT_SECRET = "bot-shared-secret"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        secret_key="test-secret-key",
        sqlalchemy_url="sqlite://",
        telegram_bot_secret=BOT_SECRET,
        telegram_bot_username="bookpay_bot",
        transaction_reference_prefix="BKS",
        currency="ETB",
        admin_emails=["ops@bookstore.test"],
    )


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def catalog(session):
    buyer = User(first_name="Abebe", email="abebe@example.com")
    other = User(first_name="Sara", email="sara@example.com")
    admin = User(first_name="Admin", email="admin@example.com", role="admin")
    disabled = User(first_name="Gone", email="gone@example.com", can_login=False)

    book = Book(title="Fikir Eske Mekabir", author="Haddis Alemayehu", price=Decimal("150.00"))
    free_book = Book(title="Free Sampler", author="Various", price=Decimal("0"), is_free=True)
    b1 = Book(title="Volume One", author="A", price=Decimal("80.00"))
    b2 = Book(title="Volume Two", author="A", price=Decimal("80.00"))
    b3 = Book(title="Volume Three", author="A", price=Decimal("80.00"))
    bundle = Bundle(title="Trilogy", price=Decimal("200.00"))
    free_bundle = Bundle(title="Gift Pack", price=Decimal("0"))

    session.add_all([buyer, other, admin, disabled, book, free_book, b1, b2, b3, bundle, free_bundle])
    session.commit()
    for book_id in (b1.id, b2.id, b3.id):
        session.add(BundleBook(bundle_id=bundle.id, book_id=book_id))
    session.commit()

    return SimpleNamespace(
        buyer_id=buyer.id,
        other_id=other.id,
        admin_id=admin.id,
        disabled_id=disabled.id,
        book_id=book.id,
        free_book_id=free_book.id,
        bundle_id=bundle.id,
        free_bundle_id=free_bundle.id,
        bundle_book_ids=[b1.id, b2.id, b3.id],
    )


@pytest.fixture
def buyer(catalog):
    return Principal(kind=PrincipalKind.user, user_id=catalog.buyer_id, role=Role.user)


@pytest.fixture
def other_user(catalog):
    return Principal(kind=PrincipalKind.user, user_id=catalog.other_id, role=Role.user)


@pytest.fixture
def admin(catalog):
    return Principal(kind=PrincipalKind.user, user_id=catalog.admin_id, role=Role.admin)


@pytest.fixture
def workflow(session, settings):
    return PurchaseWorkflow(session, settings, Notifier(session, settings))


@pytest.fixture
def client(engine, settings):
    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    # no context manager: the lifespan (logging setup, local table creation) is not needed here
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(settings):
    def make(user_id):
        token = create_access_token({"user_id": user_id}, settings)
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def bot_headers():
    return {"Authorization": f"Bearer {BOT_SECRET}"}
