import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import schemas
from ..database.database import get_db
from ..services.suggestion_engine import SuggestionEngine
from .deps import get_ai_client, get_owner_id

router = APIRouter(
    prefix="/api/suggestions",
    tags=["suggestions"],
)


@router.get("/{suggestion_id}", response_model=schemas.Suggestion)
async def read_suggestion_endpoint(
    suggestion_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
    ai_client=Depends(get_ai_client),
):
    return await SuggestionEngine(db, ai_client).get_by_id(owner_id, suggestion_id)


@router.patch("/{suggestion_id}", response_model=schemas.Suggestion)
async def update_suggestion_status_endpoint(
    suggestion_id: uuid.UUID,
    body: schemas.SuggestionStatusUpdate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
    ai_client=Depends(get_ai_client),
):
    """
    Accept or reject a pending suggestion. Accepting applies it to the note in the same commit.
    """
    updated = await SuggestionEngine(db, ai_client).update_status(owner_id, suggestion_id, body.status)
    await db.commit()
    return updated
