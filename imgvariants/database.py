from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from imgvariants.config import DB_URL

# sqlite connections are shared with FastAPI's worker threads
connect_opts = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
engine       = create_engine(DB_URL, connect_args=connect_opts)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
Base         = declarative_base()


def init_db() -> None:
    """Create missing tables; existing ones are left untouched."""
    Base.metadata.create_all(bind=engine)
