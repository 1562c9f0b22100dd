import os

os.environ.setdefault("CHESSMENTOR_DATABASE_URL", "sqlite://")
os.environ.setdefault("CHESSMENTOR_LOG_LEVEL", "WARNING")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chessmentor.database import Base
from chessmentor.store import GameRepository


@pytest.fixture
def repository():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from chessmentor import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield GameRepository(factory)
    engine.dispose()
