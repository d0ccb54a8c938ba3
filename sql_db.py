from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base

# Use the DB URL from your config (SQLite locally, Cloud SQL in production)
DB_URL = Config.SQLALCHEMY_DATABASE_URI

SessionLocal = sessionmaker(autoflush=False, autocommit=False, future=True, expire_on_commit=False)

engine = None


def configure_engine(url: str):
    """
    (Re)bind SessionLocal to a new engine. In-memory SQLite gets a StaticPool
    so every session sees the same database.
    """
    global engine
    kwargs = {"echo": False, "future": True}
    if url.startswith("sqlite") and ":memory:" in url:
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    SessionLocal.configure(bind=engine)
    return engine


def init_db():
    # Create tables if they don't exist
    Base.metadata.create_all(bind=engine)


configure_engine(DB_URL)
