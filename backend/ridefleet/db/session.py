from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ridefleet.core.config import Settings, settings


def build_engine(cfg: Settings):
    if cfg.DATABASE_URL.startswith("sqlite"):
        return create_engine(cfg.DATABASE_URL, future=True)
    return create_engine(
        cfg.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=cfg.DB_POOL_SIZE,
        max_overflow=cfg.DB_MAX_OVERFLOW,
        pool_timeout=cfg.DB_POOL_TIMEOUT_SECONDS,
        pool_recycle=cfg.DB_POOL_RECYCLE_SECONDS,
        future=True,
    )


engine = build_engine(settings)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
