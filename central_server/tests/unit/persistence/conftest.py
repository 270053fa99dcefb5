"""
Fixtures for repository tests against an in-memory SQLite database.
"""

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ....models import Base, Station, Vehicle, VehicleAuthorizedStation


@pytest_asyncio.fixture
async def session_maker():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False)

    async with maker() as session:
        session.add_all(
            [
                Station(id="st-1", name="Tunis Central", local_server_ip="192.168.1.10"),
                Station(id="st-2", name="Sousse", local_server_ip=None),
                Station(id="st-3", name="Sfax", is_active=False, local_server_ip="192.168.1.30"),
                Vehicle(id="v-1", license_plate="123 TU 4567"),
                Vehicle(id="v-2", license_plate="200 TU 1000"),
                Vehicle(id="v-3", license_plate="999 TU 9999", is_active=False),
            ]
        )
        await session.flush()
        session.add_all(
            [
                VehicleAuthorizedStation(vehicle_id="v-1", station_id="st-1"),
                VehicleAuthorizedStation(vehicle_id="v-2", station_id="st-1"),
                VehicleAuthorizedStation(vehicle_id="v-2", station_id="st-2"),
                VehicleAuthorizedStation(vehicle_id="v-3", station_id="st-1"),
            ]
        )
        await session.commit()

    yield maker
    await engine.dispose()
