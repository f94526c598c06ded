"""FastAPI dependency injection functions."""

import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.exceptions import UnauthorizedError
from db.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error("Database error: %s", e)
            await session.rollback()
            raise
        finally:
            await session.close()


def get_actor_id(request: Request) -> str:
    """
    Read the upstream-verified actor id from the first configured identity header.

    Raises:
        UnauthorizedError: if no identity header is present
    """
    for header in get_settings().actor_id_headers_list:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    raise UnauthorizedError("Missing actor identity")


async def get_current_actor(
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Resolve the calling actor's role and tenant scope.

    Returns:
        ActorScope for the identified user
    """
    from services.actor_service import ActorService

    return await ActorService(db).resolve(actor_id)
