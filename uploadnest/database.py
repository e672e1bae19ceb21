from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from uploadnest.config import settings

DATABASE_URL = settings.DATABASE_URL

engine = create_async_engine(DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def get_db():
    async with AsyncSessionLocal() as session:
        yield session

def get_session_factory() -> async_sessionmaker:
    """Factory for work that needs its own session, e.g. concurrent per-file writes."""
    return AsyncSessionLocal
