import os
import pathlib

# tests never touch a real database or broker
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from dotenv import load_dotenv

# Automatically load .env from project root
load_dotenv(dotenv_path=pathlib.Path(__file__).parent.parent.parent / ".env")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from onchain_sync.pipeline.processor import EventProcessor
from onchain_sync.pipeline.router import EventRouter, build_default_registry
from onchain_sync.storage.db import create_tables


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def router():
    return EventRouter(build_default_registry())


@pytest.fixture
def processor(session_factory, router):
    return EventProcessor(session_factory, router, max_pending_attempts=3)
