import os
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

logger = logging.getLogger(__name__)

# Use DATABASE_PATH env var for Docker, default to local path for development
DATABASE_PATH = os.environ.get("DATABASE_PATH", "./db.sqlite3")
SQLALCHEMY_DATABASE_URL = f"sqlite:///{DATABASE_PATH}"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Run a block of reads and writes as one transaction.

    Commits when the block finishes and rolls everything back if it raises,
    so a failed mutation never leaves partial writes behind.
    """
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back transaction")
        db.rollback()
        raise
