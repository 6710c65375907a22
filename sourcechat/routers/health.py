import logging

from fastapi import APIRouter, Depends

from sourcechat.dependencies import get_connection_registry, get_session_manager
from sourcechat.models.schemas import HealthResponse
from sourcechat.services.connection_registry import ConnectionRegistry
from sourcechat.services.stream_session import SessionManager
from sourcechat.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    registry: ConnectionRegistry = Depends(get_connection_registry),
    sessions: SessionManager = Depends(get_session_manager),
):
    """Return service health.  If the DB isn't ready yet (e.g. during
    container startup before lifespan runs), return a 200 with
    status="starting" so Docker healthchecks don't fail."""
    counts = {
        "active_sessions": sessions.active_count,
        "open_connections": registry.connection_count(),
    }
    try:
        async with get_db() as db:
            await db.execute("SELECT 1 FROM conversations LIMIT 1")
        return HealthResponse(status="healthy", **counts)
    except Exception as exc:
        logger.warning("Health check: DB not ready yet (%s)", exc)
        return HealthResponse(status="starting", **counts)
