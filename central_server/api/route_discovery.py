"""
Route discovery endpoints: station reachability and live queue data.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_route_discovery
from ..error_types import ErrorType, create_standard_error_response
from ..exceptions import StationUnreachableError
from ..monitoring.route_discovery_service import RouteDiscoveryService

route_discovery_router = APIRouter(prefix="/api/v1/route-discovery", tags=["route-discovery"])


def _station_not_found(station_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content=create_standard_error_response(
            ErrorType.RESOURCE_NOT_FOUND, "Station not monitored", {"stationId": station_id}
        ),
    )


@route_discovery_router.get("/health")
async def monitoring_health(service: RouteDiscoveryService = Depends(get_route_discovery)) -> dict[str, Any]:
    return {"success": True, "data": service.get_stats()}


@route_discovery_router.get("/stations")
async def list_stations(service: RouteDiscoveryService = Depends(get_route_discovery)) -> dict[str, Any]:
    stations = [station.to_dict() for station in service.get_station_availability()]
    return {"success": True, "data": stations, "count": len(stations)}


@route_discovery_router.get("/stations/online")
async def list_online_stations(service: RouteDiscoveryService = Depends(get_route_discovery)) -> dict[str, Any]:
    stations = [station.to_dict() for station in service.get_online_stations()]
    return {"success": True, "data": stations, "count": len(stations)}


@route_discovery_router.get("/station/{station_id}/status", response_model=None)
async def station_status(
    station_id: str, service: RouteDiscoveryService = Depends(get_route_discovery)
) -> dict[str, Any] | JSONResponse:
    station = service.get_station(station_id)
    if station is None:
        return _station_not_found(station_id)
    return {"success": True, "data": station.to_dict()}


@route_discovery_router.post("/station/{station_id}/refresh", response_model=None)
async def refresh_station(
    station_id: str, service: RouteDiscoveryService = Depends(get_route_discovery)
) -> dict[str, Any] | JSONResponse:
    station = await service.refresh_station(station_id)
    if station is None:
        return _station_not_found(station_id)
    return {"success": True, "data": station.to_dict()}


@route_discovery_router.get("/station/{station_id}/queue/{destination_id}", response_model=None)
async def station_queue(
    station_id: str,
    destination_id: str,
    service: RouteDiscoveryService = Depends(get_route_discovery),
) -> dict[str, Any] | JSONResponse:
    try:
        data = await service.get_cached_route_data(station_id, destination_id)
    except StationUnreachableError as e:
        return JSONResponse(
            status_code=503,
            content=create_standard_error_response(
                ErrorType.STATION_UNREACHABLE, e.message, {"stationId": station_id, "destinationId": destination_id}
            ),
        )
    return {"success": True, "data": data}
