"""
Authentication dependencies for FastAPI routes.

Extracts user identity from the X-User-Id header (set by the upstream
gateway / frontend).  Learner-owned rows are only visible to their owner;
anything else is reported as 404 so ids cannot be probed.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.database_models import SavedSyllabus

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def get_optional_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
    """Extract user ID if present, return None for anonymous callers."""
    return x_user_id or None


async def get_owned_syllabus(
    syllabus_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> SavedSyllabus:
    """
    Verify that the given saved syllabus belongs to the current user.
    Returns the SavedSyllabus ORM object or raises 404.
    """
    result = await db.execute(
        select(SavedSyllabus).where(
            SavedSyllabus.id == syllabus_id,
            SavedSyllabus.user_id == user_id,
        )
    )
    saved = result.scalar_one_or_none()

    if saved is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Saved syllabus {syllabus_id} not found.",
        )

    return saved
