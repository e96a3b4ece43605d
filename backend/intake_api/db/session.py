from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from intake_api.core.config import settings
from intake_api.db.base import Base

DATABASE_URL = settings.database_url

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # one SQLite file shared by the threadpool that serves sync routes
    connect_args = {"check_same_thread": False}
    Path(settings.DATA_DIR).mkdir(parents=True, exist_ok=True)

engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    # import models so every table is registered on Base.metadata
    from intake_api.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
