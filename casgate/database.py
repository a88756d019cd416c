import os
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
            # Ensure data dir exists
            directory = os.path.dirname(url[len("sqlite:///"):])
            if directory and not os.path.exists(directory):
                os.makedirs(directory)
            return create_engine(url, connect_args={"check_same_thread": False})
        # Single shared connection, otherwise every session gets its own empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, pool_pre_ping=True)


def create_db_and_tables(engine: Engine):
    # Register the table with the metadata before creating it
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)
