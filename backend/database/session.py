from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401  (registers every table on Base.metadata)
from core.config import settings
from models.base import Base
from services.seed_service import seed_demo_data

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, connect_args=connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def init_db() -> None:
    # Create tables. For production, use Alembic migrations.
    Base.metadata.create_all(bind=engine)

    if settings.seed_demo_data:
        with SessionLocal() as db:
            seed_demo_data(db)
