from sqlmodel import SQLModel, create_engine, Session
from .config import settings

# SQLite sessions are handed across threads by the test client
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.SQL_ECHO,
    connect_args=connect_args,
    pool_pre_ping=True,
)


def init_db():
    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency to get a database session for each request."""
    with Session(engine) as session:
        yield session
