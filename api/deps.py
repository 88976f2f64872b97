"""Request-scoped dependencies resolved from ``app.state``."""

from __future__ import annotations

from typing import Annotated, AsyncIterator

import aiosqlite
from fastapi import Depends, Request

from .database import get_db
from .settings import Settings


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_connection(request: Request) -> AsyncIterator[aiosqlite.Connection]:
    """One connection per request, closed when the response is done."""
    db = await get_db(request.app.state.settings.database_path)
    try:
        yield db
    finally:
        await db.close()


SettingsDep = Annotated[Settings, Depends(get_settings)]
DbDep = Annotated[aiosqlite.Connection, Depends(get_connection)]
