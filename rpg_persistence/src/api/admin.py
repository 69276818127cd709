"""
Administrative endpoints for the persistence engine.

Each POST runs one coordinator job immediately and returns its result.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from rpg_persistence.src.core.exceptions import PersistenceError
from rpg_persistence.src.core.logging_config import get_logger
from rpg_persistence.src.schemas.world import DatabaseStats
from rpg_persistence.src.services.engine import PersistenceEngine

router = APIRouter()
logger = get_logger(__name__)


def get_engine(request: Request) -> PersistenceEngine:
    engine = getattr(request.app.state, "persistence", None)
    if engine is None or not engine.running:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Persistence engine is not running",
        )
    return engine


def _unavailable(operation: str, error: Exception) -> HTTPException:
    logger.error(
        "Admin operation failed", extra={"operation": operation, "error": str(error)}
    )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{operation} failed",
    )


@router.post("/save", summary="Run the periodic save now")
async def force_save(engine: PersistenceEngine = Depends(get_engine)):
    logger.info("Forced save requested")
    try:
        result = await engine.coordinator.force_save()
    except (PersistenceError, SQLAlchemyError) as e:
        raise _unavailable("save", e)
    return result.to_dict()


@router.post("/chunk-cleanup", summary="Run chunk cleanup now")
async def force_chunk_cleanup(engine: PersistenceEngine = Depends(get_engine)):
    logger.info("Forced chunk cleanup requested")
    try:
        result = await engine.coordinator.force_chunk_cleanup()
    except (PersistenceError, SQLAlchemyError) as e:
        raise _unavailable("chunk cleanup", e)
    return result.to_dict()


@router.post("/session-cleanup", summary="End stale sessions now")
async def force_session_cleanup(engine: PersistenceEngine = Depends(get_engine)):
    logger.info("Forced session cleanup requested")
    try:
        result = await engine.coordinator.force_session_cleanup()
    except (PersistenceError, SQLAlchemyError) as e:
        raise _unavailable("session cleanup", e)
    return result.to_dict()


@router.post("/maintenance", summary="Run maintenance now")
async def force_maintenance(engine: PersistenceEngine = Depends(get_engine)):
    logger.info("Forced maintenance requested")
    try:
        result = await engine.coordinator.force_maintenance()
    except (PersistenceError, SQLAlchemyError) as e:
        raise _unavailable("maintenance", e)
    return result.to_dict()


@router.get("/stats", summary="Coordinator statistics")
async def coordinator_stats(engine: PersistenceEngine = Depends(get_engine)):
    stats = engine.coordinator.get_stats().to_dict()
    stats["players_online"] = engine.lifecycle.player_count
    return stats


@router.get("/database-stats", response_model=DatabaseStats, summary="Store row counts")
async def database_stats(engine: PersistenceEngine = Depends(get_engine)) -> DatabaseStats:
    try:
        return await engine.store.get_stats()
    except (PersistenceError, SQLAlchemyError) as e:
        raise _unavailable("database stats", e)
