"""
Create tables from SQLAlchemy models on a fresh database, then stamp Alembic:
    python create_tables.py && alembic stamp head
"""
import logging

from app.database import engine, Base
from app import models  # noqa: F401 - register all models with Base

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    logger.info("Sewdle tables created (or already exist): %s", ", ".join(sorted(Base.metadata.tables)))
