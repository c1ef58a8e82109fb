"""
Locations.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from practice_pulse.api.dependencies import get_database
from practice_pulse.core.errors import BadRequestError, NotFoundError, internal_error
from practice_pulse.storage.database import Database, Tables

router = APIRouter(tags=["locations"])

UPDATABLE_COLUMNS = ("name", "notes")


LIST_LOCATIONS_SQL = f"SELECT * FROM {Tables.LOCATIONS} ORDER BY location_id ASC"

LOCATION_BY_ID_SQL = f"SELECT * FROM {Tables.LOCATIONS} WHERE location_id = $1 LIMIT 1"

INSERT_LOCATION_SQL = f"""
    INSERT INTO {Tables.LOCATIONS} (name, notes)
    VALUES ($1, $2)
    RETURNING *
"""

DELETE_LOCATION_SQL = f"DELETE FROM {Tables.LOCATIONS} WHERE location_id = $1 RETURNING location_id"


@router.get("")
async def list_locations(db: Database = Depends(get_database)):
    try:
        rows = await db.fetch(LIST_LOCATIONS_SQL)
    except Exception as e:
        raise internal_error("listing locations", e) from e
    return [dict(row) for row in rows]


@router.post("", status_code=201)
async def create_location(
    payload: dict[str, Any] = Body(default_factory=dict),
    db: Database = Depends(get_database),
):
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise BadRequestError("Location name is required")

    try:
        row = await db.fetchrow(INSERT_LOCATION_SQL, name.strip(), payload.get("notes"))
    except Exception as e:
        raise internal_error("creating location", e) from e
    return dict(row)


@router.get("/{location_id}")
async def get_location(location_id: int, db: Database = Depends(get_database)):
    try:
        row = await db.fetchrow(LOCATION_BY_ID_SQL, location_id)
    except Exception as e:
        raise internal_error("fetching location", e) from e
    if row is None:
        raise NotFoundError("Location not found")
    return dict(row)


@router.patch("/{location_id}")
async def update_location(
    location_id: int,
    payload: dict[str, Any] = Body(default_factory=dict),
    db: Database = Depends(get_database),
):
    provided = [(column, payload[column]) for column in UPDATABLE_COLUMNS if column in payload]
    if not provided:
        raise BadRequestError("No updatable fields provided")

    set_clauses = ", ".join(f"{column} = ${i}" for i, (column, _) in enumerate(provided, start=1))
    values = [value for _, value in provided]
    values.append(location_id)
    sql = f"""
        UPDATE {Tables.LOCATIONS}
        SET {set_clauses}
        WHERE location_id = ${len(values)}
        RETURNING *
    """

    try:
        row = await db.fetchrow(sql, *values)
    except Exception as e:
        raise internal_error("updating location", e) from e
    if row is None:
        raise NotFoundError("Location not found")
    return dict(row)


@router.delete("/{location_id}", status_code=204)
async def delete_location(location_id: int, db: Database = Depends(get_database)):
    try:
        deleted = await db.fetchval(DELETE_LOCATION_SQL, location_id)
    except Exception as e:
        raise internal_error("deleting location", e) from e
    if deleted is None:
        raise NotFoundError("Location not found")
