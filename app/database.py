from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import structlog

from app.core.config import settings
from app.models.base import Base


logger = structlog.get_logger(__name__)

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

db_engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    import app.models

    if settings.ENV == "dev":
        Base.metadata.create_all(bind=db_engine)
        logger.info("db_tables_ensured", mode="create_all")
    else:
        logger.info("db_tables_skipped", mode="alembic")
