from sqlmodel import SQLModel, create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import DATABASE_URL

# Import all models to ensure they are registered with SQLModel metadata
from .models import StoreMeta, Task  # noqa: F401

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def make_engine(url: str):
    """Create an engine for either SQLite or a server database."""
    if url.startswith("sqlite"):
        if url in _MEMORY_URLS:
            # One shared connection so every thread sees the same database
            return create_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
        )

    # Postgres: disable pooling for serverless and enable pre-ping
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        poolclass=NullPool,
    )


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create the REST service tables."""
    SQLModel.metadata.create_all(bind=engine, tables=[Task.__table__])
