from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mobipay.config import get_settings

settings = get_settings()


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session per request; closed when the request finishes."""
    async with AsyncSessionLocal() as db:
        yield db


async def init_models(bind=None) -> None:
    """
    Create tables and seed the default system settings.
    Used for local development and tests; production schemas are managed
    outside the service.
    """
    from mobipay.models import SystemSetting  # noqa: F401  (registers mappers)
    from mobipay.services.system_settings import seed_default_settings

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=target, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as db:
        await seed_default_settings(db)
