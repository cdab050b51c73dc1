from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from coursegrade.core.config import DATABASE_URL

engine = create_engine(DATABASE_URL, future=True, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Create all tables. Production deployments run migrations instead."""
    from coursegrade.models.orm import Base
    Base.metadata.create_all(bind=bind or engine)
