from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import os

# Get DB connection string from environment variables.
# Defaults to a local sqlite file so the store can run outside docker-compose.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orders.db")

# sqlite connections are shared across the threads uvicorn hands requests to;
# an in-memory database must also live on a single connection.
engine_kwargs = {}
if DATABASE_URL.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        engine_kwargs["poolclass"] = StaticPool

# Create the SQLAlchemy engine.
engine = create_engine(DATABASE_URL, **engine_kwargs)

# Create a configured "Session" class for database interactions.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative ORM models.
Base = declarative_base()

def get_db():
    """FastAPI dependency to get a DB session for a single request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        # Ensure the session is always closed after the request is finished.
        db.close()
