from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from slotbook.core.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # Concurrent writers wait on the database lock instead of failing at once
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
