import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import schemas
from ..database.database import get_db
from ..database.enums import RelationshipType
from ..services.relationship_store import RelationshipStore
from .deps import get_owner_id

router = APIRouter(
    prefix="/api/relationships",
    tags=["relationships"],
)


@router.post("/", response_model=schemas.Relationship, status_code=status.HTTP_201_CREATED)
async def create_relationship_endpoint(
    relationship: schemas.RelationshipCreate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    created = await RelationshipStore(db).create(owner_id, relationship)
    await db.commit()
    return created


@router.get("/", response_model=schemas.RelationshipsPage)
async def list_relationships_endpoint(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    source_entity_id: Optional[uuid.UUID] = None,
    target_entity_id: Optional[uuid.UUID] = None,
    type: Optional[RelationshipType] = None,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    params = schemas.RelationshipListParams(
        page=page, limit=limit, source_entity_id=source_entity_id, target_entity_id=target_entity_id, type=type,
    )
    return await RelationshipStore(db).list(owner_id, params)


@router.get("/{relationship_id}", response_model=schemas.Relationship)
async def read_relationship_endpoint(
    relationship_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await RelationshipStore(db).get_by_id(owner_id, relationship_id)


@router.patch("/{relationship_id}", response_model=schemas.Relationship)
async def update_relationship_endpoint(
    relationship_id: uuid.UUID,
    relationship: schemas.RelationshipUpdate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Change the type of a relationship. Its endpoints cannot be changed.
    """
    updated = await RelationshipStore(db).update(owner_id, relationship_id, relationship.type)
    await db.commit()
    return updated


@router.delete("/{relationship_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_relationship_endpoint(
    relationship_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    await RelationshipStore(db).delete(owner_id, relationship_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
