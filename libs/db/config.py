from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from libs.common.config import get_settings


def create_store_engine(url: str | None = None) -> Engine:
    """Create the synchronous engine backing the durable pending-intent slots."""
    settings = get_settings()
    url = url or settings.STORE_DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # The engine is shared by the event loop thread and FastAPI's threadpool
        connect_args["check_same_thread"] = False
    return create_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,  # Test connections before using
        connect_args=connect_args,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
