"""
Instant sync endpoints used by administrative tooling to push entity changes.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..dependencies import get_sync_service
from ..error_types import ErrorType, create_standard_error_response
from ..structured_logging.enhanced_logging_config import get_logger
from ..sync.instant_sync_service import InstantSyncService

logger = get_logger(__name__)

sync_router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


class SyncRequest(BaseModel):
    """Body of a manual entity push."""

    model_config = ConfigDict(populate_by_name=True)

    operation: str
    data: dict[str, Any] = Field(default_factory=dict)
    station_id: str | None = Field(default=None, alias="stationId")
    station_ids: list[str] | None = Field(default=None, alias="stationIds")
    exclude_station_id: str | None = Field(default=None, alias="excludeStationId")


@sync_router.get("/status")
async def sync_status(service: InstantSyncService = Depends(get_sync_service)) -> dict[str, Any]:
    return {"success": True, "data": service.get_stats()}


@sync_router.post("/{entity_type}", response_model=None)
async def push_entity(
    entity_type: str,
    request: SyncRequest,
    service: InstantSyncService = Depends(get_sync_service),
) -> dict[str, Any] | JSONResponse:
    try:
        sync_ids = await service.sync_entity(
            entity_type,
            request.operation.upper(),
            request.data,
            station_id=request.station_id,
            station_ids=request.station_ids,
            exclude_station_id=request.exclude_station_id,
        )
    except ValueError as e:
        logger.warning("Rejected sync request", entity_type=entity_type, error=str(e))
        return JSONResponse(
            status_code=400,
            content=create_standard_error_response(ErrorType.INVALID_FORMAT, str(e), {"entityType": entity_type}),
        )
    return {"success": True, "data": {"syncIds": sync_ids, "delivered": len(sync_ids)}}
