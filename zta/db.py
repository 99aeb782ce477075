import logging
from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy import text
from zta.models import *
from zta.config import settings

logger = logging.getLogger("ZTA.DB")

# Get the DATABASE_URL from our centralized settings
DATABASE_URL = settings.DATABASE_URL
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

def create_db_and_tables():
    logger.info("Creating database and tables...")
    SQLModel.metadata.create_all(engine)

    if engine.dialect.name != "postgresql":
        return

    with Session(engine) as session:
        try:
            session.exec(
                text("SELECT create_hypertable('analyticsevent', 'timestamp', if_not_exists => TRUE, migrate_data => TRUE);")
            )
            session.commit()
            logger.info("Hypertable 'analyticsevent' created or already exists.")
        except Exception as e:
            logger.warning(f"Could not create hypertable: {e}")
            logger.warning("Continuing with a plain table. Enable the TimescaleDB extension for hypertables.")
            session.rollback()

def check_database() -> bool:
    """Runs a trivial query, used by the health endpoint."""
    try:
        with Session(engine) as session:
            session.exec(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False

def get_session():
    """
    FastAPI Dependency that provides a database session per request.
    """
    with Session(engine) as session:
        yield session
