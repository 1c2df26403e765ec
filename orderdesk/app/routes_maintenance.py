"""Housekeeping endpoints safe to call on any schedule."""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings

from .deps import get_session, get_settings_dep
from .security.cooldown import purge_expired
from .utils.responses import ok

router = APIRouter()


@router.post("/admin/maintenance/rate-limits/purge")
async def purge_rate_limits(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings_dep),
) -> dict:
    """Delete cooldown entries that expired long ago."""

    purged = await purge_expired(
        session, timedelta(seconds=settings.rate_limit_purge_after_secs)
    )
    return ok({"purged": purged})
