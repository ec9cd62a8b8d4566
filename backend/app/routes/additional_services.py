from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_session
from app.models import AdditionalService

router = APIRouter(prefix="/services", tags=["services"])


@router.get("")
async def list_additional_services(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    result = await session.execute(
        select(AdditionalService).where(AdditionalService.is_active.is_(True)).order_by(AdditionalService.code)
    )
    return {"services": [service.to_dict() for service in result.scalars().all()]}
