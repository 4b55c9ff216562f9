from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Yield a SQLAlchemy database session for the Reservations service.

    Used as a FastAPI dependency: one session per HTTP request, closed
    afterwards. Engine operations commit or roll back on this session.

    Yields
    ------
    Session
        Active SQLAlchemy session bound to the reservations database engine.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
