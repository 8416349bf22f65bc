from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from core.config import settings

if not settings.DATABASE_URL:
    raise RuntimeError("DATABASE_URL not set")


def make_engine(url: str):
    if url.startswith("sqlite"):
        # sqlite serializes writers itself; wait on its lock instead of failing fast
        return create_engine(url, echo=False, future=True, connect_args={"check_same_thread": False, "timeout": 30})
    return create_engine(url, echo=False, pool_pre_ping=True, pool_size=5, max_overflow=5, future=True)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
