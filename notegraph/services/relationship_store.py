import uuid
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..database import crud, models, schemas
from ..database.enums import RelationshipType
from ..errors import Conflict, InvalidOperation, NotFound

DUPLICATE_PAIR = "A relationship between these entities already exists"
NOT_FOUND = "Relationship not found or access denied"


class RelationshipStore:
    """Directed, typed entity-to-entity edges; one per ordered pair per owner."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, user_id: uuid.UUID, data: schemas.RelationshipCreate) -> schemas.Relationship:
        if data.source_entity_id == data.target_entity_id:
            raise InvalidOperation("Cannot create a relationship from an entity to itself")

        owned = await crud.owned_entity_ids(self.db, user_id, [data.source_entity_id, data.target_entity_id])
        if len(owned) != 2:
            raise NotFound("One or both entities not found or do not belong to user")

        existing = await self.db.execute(
            select(models.Relationship.id)
            .where(models.Relationship.user_id == user_id)
            .where(models.Relationship.source_entity_id == data.source_entity_id)
            .where(models.Relationship.target_entity_id == data.target_entity_id)
        )
        if existing.first() is not None:
            raise Conflict(DUPLICATE_PAIR)

        db_rel = models.Relationship(
            user_id=user_id,
            source_entity_id=data.source_entity_id,
            target_entity_id=data.target_entity_id,
            type=data.type,
        )
        self.db.add(db_rel)
        await crud.flush_or_conflict(self.db, DUPLICATE_PAIR)
        await self.db.refresh(db_rel)
        return schemas.Relationship.model_validate(db_rel)

    async def get_by_id(self, user_id: uuid.UUID, relationship_id: uuid.UUID) -> schemas.Relationship:
        result = await self.db.execute(
            select(models.Relationship)
            .where(models.Relationship.id == relationship_id)
            .where(models.Relationship.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        db_rel = result.scalars().first()
        if db_rel is None:
            raise NotFound(NOT_FOUND)
        return schemas.Relationship.model_validate(db_rel)

    async def update(self, user_id: uuid.UUID, relationship_id: uuid.UUID, type: RelationshipType) -> schemas.Relationship:
        """Changes only the relationship type; endpoints are immutable."""
        result = await self.db.execute(
            update(models.Relationship)
            .where(models.Relationship.id == relationship_id)
            .where(models.Relationship.user_id == user_id)
            .values(type=type)
        )
        if result.rowcount == 0:
            raise NotFound(NOT_FOUND)
        return await self.get_by_id(user_id, relationship_id)

    async def delete(self, user_id: uuid.UUID, relationship_id: uuid.UUID) -> None:
        result = await self.db.execute(
            delete(models.Relationship)
            .where(models.Relationship.id == relationship_id)
            .where(models.Relationship.user_id == user_id)
        )
        if result.rowcount == 0:
            raise NotFound(NOT_FOUND)

    async def list(self, user_id: uuid.UUID, params: Optional[schemas.RelationshipListParams] = None) -> schemas.RelationshipsPage:
        params = params or schemas.RelationshipListParams()
        source = aliased(models.Entity)
        target = aliased(models.Entity)

        filters = [models.Relationship.user_id == user_id]
        if params.source_entity_id:
            filters.append(models.Relationship.source_entity_id == params.source_entity_id)
        if params.target_entity_id:
            filters.append(models.Relationship.target_entity_id == params.target_entity_id)
        if params.type:
            filters.append(models.Relationship.type == params.type)

        total = (await self.db.execute(
            select(func.count()).select_from(models.Relationship).where(*filters)
        )).scalar_one()

        query = (
            select(models.Relationship, source, target)
            .join(source, source.id == models.Relationship.source_entity_id)
            .join(target, target.id == models.Relationship.target_entity_id)
            .where(*filters)
            .order_by(models.Relationship.created_at.desc())
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
        )
        rows = (await self.db.execute(query)).all()
        data = [
            schemas.RelationshipWithEntities(
                **schemas.Relationship.model_validate(rel).model_dump(),
                source_entity=schemas.EntitySummary.model_validate(src),
                target_entity=schemas.EntitySummary.model_validate(tgt),
            )
            for rel, src, tgt in rows
        ]
        return schemas.RelationshipsPage(data=data, pagination=schemas.Pagination.build(params.page, params.limit, total))
