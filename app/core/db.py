from __future__ import annotations

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

_engine: Optional[AsyncEngine] = None
_SessionLocal: Optional[async_sessionmaker[AsyncSession]] = None

# Provider URL formats mapped onto async drivers
_ASYNC_SCHEMES = (
	("postgres://", "postgresql+asyncpg://"),
	("postgresql://", "postgresql+asyncpg://"),
	("postgresql+psycopg2://", "postgresql+asyncpg://"),
	("postgresql+psycopg://", "postgresql+asyncpg://"),
	("sqlite://", "sqlite+aiosqlite://"),
)


def _ensure_async_url(url: str) -> str:
	"""Rewrite a database URL to use an async driver (asyncpg or aiosqlite).

	URLs that already name an async driver are returned unchanged.
	"""
	for prefix, replacement in _ASYNC_SCHEMES:
		if url.startswith(prefix):
			return replacement + url[len(prefix):]
	return url


def init_engine_and_session() -> None:
	global _engine, _SessionLocal
	if _engine is not None:
		return
	if not settings.DATABASE_URL:
		raise RuntimeError("DATABASE_URL is not configured. Set it in the environment or .env file.")
	_engine = create_async_engine(_ensure_async_url(settings.DATABASE_URL), pool_pre_ping=True, echo=settings.DEBUG)
	# Entities outlive commits so services can return them after a write
	_SessionLocal = async_sessionmaker(bind=_engine, expire_on_commit=False)


async def dispose_engine() -> None:
	global _engine, _SessionLocal
	if _engine is not None:
		await _engine.dispose()
	_engine = None
	_SessionLocal = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
	if _SessionLocal is None:
		init_engine_and_session()
	assert _SessionLocal is not None
	async with _SessionLocal() as session:
		yield session
