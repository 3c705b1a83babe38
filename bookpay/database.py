from functools import lru_cache

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from bookpay.config import get_settings


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # single shared connection so in-memory databases survive across sessions
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,      # checks dead connections
        pool_recycle=1800        # refresh every 30 min
    )


@lru_cache()
def get_engine():
    return build_engine(get_settings().database_url)


def create_db_and_tables(engine=None):
    import bookpay.models  # noqa: F401  registers every table on the metadata
    SQLModel.metadata.create_all(engine or get_engine())


def get_session():
    with Session(get_engine()) as session:
        yield session
