"""User profile CRUD routes."""

from __future__ import annotations

from typing import Literal

import aiosqlite
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, EmailStr, Field, field_validator

from .deps import DbDep
from .queries import InvalidIdentifierError, parse_ids

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


class ProfileLocation(BaseModel):
    """GeoJSON point; coordinates are ``[longitude, latitude]``."""

    type: Literal["Point"] = "Point"
    coordinates: tuple[float, float]

    @field_validator("coordinates")
    @classmethod
    def _on_globe(cls, value: tuple[float, float]) -> tuple[float, float]:
        lng, lat = value
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError("coordinates must be [longitude, latitude] on the globe")
        return value


class ProfileCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    location: ProfileLocation
    bio: str | None = None


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    location: ProfileLocation | None = None
    bio: str | None = None


def _profile(row: aiosqlite.Row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "location": {
            "type": "Point",
            "coordinates": [row["longitude"], row["latitude"]],
        },
        "bio": row["bio"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _profile_id(raw: str) -> int:
    try:
        ids = parse_ids(raw)
    except InvalidIdentifierError:
        ids = []
    if len(ids) != 1:
        raise HTTPException(status_code=400, detail=f"Invalid profile id: {raw!r}")
    return ids[0]


async def _fetch(db: aiosqlite.Connection, profile_id: int) -> aiosqlite.Row | None:
    cursor = await db.execute("SELECT * FROM profiles WHERE id = ?", (profile_id,))
    return await cursor.fetchone()


@router.post("", status_code=201)
async def create_profile(body: ProfileCreate, db: DbDep):
    lng, lat = body.location.coordinates
    try:
        cursor = await db.execute(
            "INSERT INTO profiles (name, email, longitude, latitude, bio) "
            "VALUES (?, ?, ?, ?, ?)",
            (body.name, body.email, lng, lat, body.bio),
        )
        await db.commit()
    except aiosqlite.IntegrityError:
        raise HTTPException(status_code=409, detail="A profile with this email already exists")
    return _profile(await _fetch(db, cursor.lastrowid))


@router.get("/{profile_id}")
async def get_profile(profile_id: str, db: DbDep):
    row = await _fetch(db, _profile_id(profile_id))
    if not row:
        raise HTTPException(status_code=404, detail="Profile not found")
    return _profile(row)


@router.put("/{profile_id}")
async def update_profile(
    profile_id: str,
    body: ProfileUpdate,
    db: DbDep,
):
    pid = _profile_id(profile_id)
    updates = body.model_dump(exclude_unset=True)
    columns: dict[str, object] = {}
    for key in ("name", "email"):
        if updates.get(key) is not None:
            columns[key] = updates[key]
    # An explicit null clears the bio.
    if "bio" in updates:
        columns["bio"] = updates["bio"]
    if body.location is not None:
        columns["longitude"], columns["latitude"] = body.location.coordinates

    if columns:
        assignments = ", ".join(f"{col} = ?" for col in columns)
        try:
            cursor = await db.execute(
                f"UPDATE profiles SET {assignments}, "
                "updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now') WHERE id = ?",
                (*columns.values(), pid),
            )
            await db.commit()
        except aiosqlite.IntegrityError:
            raise HTTPException(
                status_code=409, detail="A profile with this email already exists"
            )
        if cursor.rowcount == 0:
            raise HTTPException(status_code=404, detail="Profile not found")

    row = await _fetch(db, pid)
    if not row:
        raise HTTPException(status_code=404, detail="Profile not found")
    return _profile(row)


@router.delete("/{profile_id}")
async def delete_profile(profile_id: str, db: DbDep):
    cursor = await db.execute(
        "DELETE FROM profiles WHERE id = ?", (_profile_id(profile_id),)
    )
    await db.commit()
    if cursor.rowcount == 0:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"message": "Profile deleted successfully"}
