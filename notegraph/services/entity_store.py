import logging
import uuid
from typing import Iterable, List, Optional, Set

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import crud, models, schemas
from ..errors import Conflict, NotFound

logger = logging.getLogger(__name__)

DUPLICATE_NAME = "An entity with this name already exists"


class EntityStore:
    """CRUD over a user's entities. Every query filters by owner as well as id."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_row(self, user_id: uuid.UUID, entity_id: uuid.UUID) -> Optional[models.Entity]:
        result = await self.db.execute(
            select(models.Entity)
            .where(models.Entity.id == entity_id)
            .where(models.Entity.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _name_taken(self, user_id: uuid.UUID, name: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        query = (
            select(models.Entity.id)
            .where(models.Entity.user_id == user_id)
            .where(models.Entity.name == name)
        )
        if exclude_id is not None:
            query = query.where(models.Entity.id != exclude_id)
        result = await self.db.execute(query)
        return result.first() is not None

    async def create(self, user_id: uuid.UUID, data: schemas.EntityCreate) -> schemas.Entity:
        if await self._name_taken(user_id, data.name):
            raise Conflict(DUPLICATE_NAME)
        db_entity = models.Entity(user_id=user_id, name=data.name, type=data.type, description=data.description)
        self.db.add(db_entity)
        await crud.flush_or_conflict(self.db, DUPLICATE_NAME)
        await self.db.refresh(db_entity)
        return schemas.Entity.model_validate(db_entity)

    async def get_by_id(self, user_id: uuid.UUID, entity_id: uuid.UUID) -> schemas.Entity:
        db_entity = await self._get_row(user_id, entity_id)
        if db_entity is None:
            raise NotFound("Entity not found")
        return schemas.Entity.model_validate(db_entity)

    async def find_by_name(self, user_id: uuid.UUID, name: str) -> Optional[schemas.Entity]:
        result = await self.db.execute(
            select(models.Entity)
            .where(models.Entity.user_id == user_id)
            .where(models.Entity.name == name)
        )
        db_entity = result.scalars().first()
        return schemas.Entity.model_validate(db_entity) if db_entity else None

    async def owned_ids(self, user_id: uuid.UUID, entity_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
        return await crud.owned_entity_ids(self.db, user_id, entity_ids)

    async def list(self, user_id: uuid.UUID, params: Optional[schemas.EntityListParams] = None) -> List[schemas.EntityWithCount]:
        """Lists entities with a read-time ``note_count`` aggregate."""
        params = params or schemas.EntityListParams()
        note_count = func.count(models.NoteEntityLink.note_id).label("note_count")
        query = (
            select(models.Entity, note_count)
            .outerjoin(models.NoteEntityLink, models.NoteEntityLink.entity_id == models.Entity.id)
            .where(models.Entity.user_id == user_id)
            .group_by(models.Entity.id)
        )
        if params.search:
            query = query.where(models.Entity.name.ilike(f"%{params.search}%"))
        if params.type:
            query = query.where(models.Entity.type == params.type)

        sort_column = note_count if params.sort == "note_count" else getattr(models.Entity, params.sort)
        query = query.order_by(sort_column.asc() if params.order == "asc" else sort_column.desc(), models.Entity.name.asc())
        query = query.limit(params.limit)

        result = await self.db.execute(query)
        out: List[schemas.EntityWithCount] = []
        for db_entity, count in result.all():
            item = schemas.EntityWithCount.model_validate(db_entity)
            item.note_count = count
            out.append(item)
        return out

    async def update(self, user_id: uuid.UUID, entity_id: uuid.UUID, data: schemas.EntityUpdate) -> schemas.Entity:
        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("name") is None:
            update_data.pop("name", None)
        if update_data.get("type") is None:
            update_data.pop("type", None)
        if "name" in update_data and await self._name_taken(user_id, update_data["name"], exclude_id=entity_id):
            raise Conflict(DUPLICATE_NAME)

        if update_data:
            result = await crud.execute_or_conflict(
                self.db,
                update(models.Entity)
                .where(models.Entity.id == entity_id)
                .where(models.Entity.user_id == user_id)
                .values(**update_data),
                DUPLICATE_NAME,
            )
            if result.rowcount == 0:
                raise NotFound("Entity not found")
        return await self.get_by_id(user_id, entity_id)

    async def delete(self, user_id: uuid.UUID, entity_id: uuid.UUID) -> None:
        """Deletes an entity and, explicitly, every note link and relationship that references it."""
        removed = await crud.purge_entities(self.db, user_id, [entity_id])
        if not removed:
            raise NotFound("Entity not found")
        logger.debug("Deleted entity %s with its links and relationships", entity_id)
