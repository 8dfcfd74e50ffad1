import time
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import text

from ..core.config import settings
from .models import Base


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO, future=True)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_schema(bind=None) -> None:
    """Create all tables that do not exist yet.

    Production deployments run the Alembic migrations instead; this is used
    for local SQLite databases and the test suite.
    """
    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_health() -> tuple[bool, float, str | None]:
    """Check database connection health.

    Returns:
        Tuple of (is_healthy, latency_ms, error_message)
    """
    start = time.time()
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            latency_ms = (time.time() - start) * 1000
            return (True, latency_ms, None)
    except Exception as e:
        latency_ms = (time.time() - start) * 1000
        return (False, latency_ms, str(e))
