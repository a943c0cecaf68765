from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker


def create_engine(database_url: str, pool_size: int = 5, max_overflow: int = 10) -> AsyncEngine:
    kwargs = {"echo": False}
    # SQLite (tests, local runs) does not take pool sizing arguments
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True)
    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
