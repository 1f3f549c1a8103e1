import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///dental.sqlite3")
SessionLocal = sessionmaker(autoflush=False, autocommit=False, future=True)
Base = declarative_base()
engine = None


def init_engine(url=DATABASE_URL):
    """Bind SessionLocal to ``url`` and create any missing tables."""
    global engine
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # in-memory databases live on a single connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, echo=False, future=True, **kwargs)
    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine
