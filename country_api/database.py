from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from country_api.config import settings


def _engine_kwargs(url: str) -> dict:
    # Sessions are handed to the threadpool during refresh, so SQLite must
    # accept connections used outside the creating thread.
    if make_url(url).drivername.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Session factory owned by the refresh pipeline for its own transaction."""
    return SessionLocal
