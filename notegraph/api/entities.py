import uuid
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import schemas
from ..database.database import get_db
from ..database.enums import EntityType
from ..services.entity_store import EntityStore
from .deps import get_owner_id

router = APIRouter(
    prefix="/api/entities",
    tags=["entities"],
)


@router.post("/", response_model=schemas.Entity, status_code=status.HTTP_201_CREATED)
async def create_entity_endpoint(
    entity: schemas.EntityCreate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    created = await EntityStore(db).create(owner_id, entity)
    await db.commit()
    return created


@router.get("/", response_model=List[schemas.EntityWithCount])
async def list_entities_endpoint(
    search: Optional[str] = None,
    type: Optional[EntityType] = None,
    limit: int = Query(default=50, ge=1, le=100),
    sort: Literal["name", "created_at", "type", "note_count"] = "name",
    order: Literal["asc", "desc"] = "asc",
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    List entities with the number of notes linking to each.
    """
    params = schemas.EntityListParams(search=search, type=type, limit=limit, sort=sort, order=order)
    return await EntityStore(db).list(owner_id, params)


@router.get("/{entity_id}", response_model=schemas.Entity)
async def read_entity_endpoint(
    entity_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await EntityStore(db).get_by_id(owner_id, entity_id)


@router.patch("/{entity_id}", response_model=schemas.Entity)
async def update_entity_endpoint(
    entity_id: uuid.UUID,
    entity: schemas.EntityUpdate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    updated = await EntityStore(db).update(owner_id, entity_id, entity)
    await db.commit()
    return updated


@router.delete("/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entity_endpoint(
    entity_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete an entity together with its note links and relationships.
    """
    await EntityStore(db).delete(owner_id, entity_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
