from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from onchain_sync.config.settings import DATABASE_URL
from onchain_sync.storage.base import Base


def _engine_kwargs(url: str, pooled: bool) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    if not pooled:
        return {"poolclass": NullPool}
    return {"pool_size": 10, "max_overflow": 20}


# Celery workers fork; they get a pool-less engine
worker_engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    **_engine_kwargs(DATABASE_URL, pooled=False),
)
WorkerSessionFactory = sessionmaker(
    autoflush=False,
    expire_on_commit=False,
    bind=worker_engine,
)

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    **_engine_kwargs(DATABASE_URL, pooled=True),
)
SessionFactory = sessionmaker(
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


def create_tables(bind=None) -> None:
    # model modules register themselves on Base.metadata
    import onchain_sync.storage.models.processing_record  # noqa: F401
    import onchain_sync.storage.models.pool_state  # noqa: F401
    import onchain_sync.storage.models.amm_pair  # noqa: F401
    import onchain_sync.storage.models.processing_run  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
