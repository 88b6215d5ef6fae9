import uuid
from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import schemas
from ..database.database import get_db
from ..errors import NotFound
from ..services.profile_gate import ProfileGate
from ..services.statistics import StatisticsService
from .deps import get_owner_id

router = APIRouter(
    prefix="/api",
    tags=["profile"],
)


@router.get("/profile", response_model=schemas.Profile)
async def read_profile_endpoint(
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    profile = await ProfileGate(db).get_profile(owner_id)
    if profile is None:
        raise NotFound("Profile not found")
    return profile


@router.put("/profile", response_model=schemas.Profile)
async def update_profile_endpoint(
    body: schemas.ProfileUpdate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Record whether the user agrees to their notes being sent to the AI provider.
    """
    profile = await ProfileGate(db).set_ai_consent(owner_id, body.has_agreed_to_ai_data_processing)
    await db.commit()
    return profile


@router.get("/statistics", response_model=schemas.Statistics)
async def read_statistics_endpoint(
    period: Literal["all", "week", "month", "year"] = "all",
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await StatisticsService(db).get_statistics(owner_id, period)
