"""
NoteStore: notes, their entity links, and the orphan-entity cleanup policy.

An entity that loses its last note link through a note deletion, a link
removal or a link replacement is deleted together with its relationships.
Entities that were never linked are left alone.

Multi-step mutations here (replace-all links, delete + cleanup) run as several
statements on the caller's session. They are atomic only if the caller commits
once at the end of the request, which the API layer does; on a store without
transactions a failure between steps leaves the completed steps in place.
"""
import logging
import uuid
from typing import Iterable, List, Optional, Set

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database import crud, models, schemas
from ..database.enums import RelationshipType
from ..errors import Conflict, NotFound

logger = logging.getLogger(__name__)

DUPLICATE_TITLE = "A note with this title already exists"
DUPLICATE_LINK = "Entity is already linked to this note"
ENTITIES_NOT_FOUND = "One or more entities not found or do not belong to the user"


def _note_to_schema(db_note: models.Note) -> schemas.Note:
    entities = [
        schemas.LinkedEntity(**schemas.Entity.model_validate(link.entity).model_dump(), link_type=link.type)
        for link in db_note.entity_links
        if link.entity is not None
    ]
    return schemas.Note(
        id=db_note.id,
        user_id=db_note.user_id,
        title=db_note.title,
        content=db_note.content,
        created_at=db_note.created_at,
        updated_at=db_note.updated_at,
        entities=entities,
    )


class NoteStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # --- helpers ---

    async def _title_taken(self, user_id: uuid.UUID, title: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        query = (
            select(models.Note.id)
            .where(models.Note.user_id == user_id)
            .where(models.Note.title == title)
        )
        if exclude_id is not None:
            query = query.where(models.Note.id != exclude_id)
        return (await self.db.execute(query)).first() is not None

    async def _require_note(self, user_id: uuid.UUID, note_id: uuid.UUID) -> None:
        if not await crud.note_exists(self.db, user_id, note_id):
            raise NotFound("Note not found")

    async def _validate_entities(self, user_id: uuid.UUID, entity_ids: List[uuid.UUID]) -> None:
        """All ids must exist and belong to the user; checked in one query."""
        wanted = set(entity_ids)
        if not wanted:
            return
        owned = await crud.owned_entity_ids(self.db, user_id, wanted)
        if len(owned) != len(wanted):
            raise NotFound(ENTITIES_NOT_FOUND)

    async def _linked_entity_ids(self, note_id: uuid.UUID) -> Set[uuid.UUID]:
        result = await self.db.execute(
            select(models.NoteEntityLink.entity_id).where(models.NoteEntityLink.note_id == note_id)
        )
        return set(result.scalars().all())

    async def _get_link(self, note_id: uuid.UUID, entity_id: uuid.UUID) -> Optional[models.NoteEntityLink]:
        result = await self.db.execute(
            select(models.NoteEntityLink)
            .where(models.NoteEntityLink.note_id == note_id)
            .where(models.NoteEntityLink.entity_id == entity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _cleanup_orphans(self, user_id: uuid.UUID, entity_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
        """Deletes the given entities that no longer have any note link. Run after the link removal."""
        candidates = set(entity_ids)
        if not candidates:
            return set()
        still_linked = await crud.referenced_entity_ids(self.db, candidates)
        removed = await crud.purge_entities(self.db, user_id, candidates - still_linked)
        if removed:
            logger.debug("Orphan cleanup removed %d entit(y/ies): %s", len(removed), sorted(map(str, removed)))
        return removed

    async def _replace_links(self, note_id: uuid.UUID, links: List[schemas.NoteEntityLinkInput]) -> Set[uuid.UUID]:
        """Deletes every link of the note, then inserts ``links``. Returns the entity ids that were dropped."""
        previous = await self._linked_entity_ids(note_id)
        await self.db.execute(delete(models.NoteEntityLink).where(models.NoteEntityLink.note_id == note_id))
        self.db.add_all([
            models.NoteEntityLink(note_id=note_id, entity_id=link.entity_id, type=link.type)
            for link in links
        ])
        await crud.flush_or_conflict(self.db, DUPLICATE_LINK)
        logger.debug("Replaced links of note %s: %d -> %d", note_id, len(previous), len(links))
        return previous - {link.entity_id for link in links}

    # --- notes ---

    async def get_by_id(self, user_id: uuid.UUID, note_id: uuid.UUID) -> schemas.Note:
        result = await self.db.execute(
            select(models.Note)
            .options(selectinload(models.Note.entity_links))
            .where(models.Note.id == note_id)
            .where(models.Note.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        db_note = result.scalars().first()
        if db_note is None:
            raise NotFound("Note not found")
        return _note_to_schema(db_note)

    async def list(self, user_id: uuid.UUID, params: Optional[schemas.NoteListParams] = None) -> schemas.NotesPage:
        params = params or schemas.NoteListParams()
        filters = [models.Note.user_id == user_id]
        if params.search:
            pattern = f"%{params.search}%"
            filters.append(or_(models.Note.title.ilike(pattern), models.Note.content.ilike(pattern)))
        if params.entity_ids:
            # Notes linked to every one of the requested entities.
            wanted = set(params.entity_ids)
            matching = (
                select(models.NoteEntityLink.note_id)
                .where(models.NoteEntityLink.entity_id.in_(list(wanted)))
                .group_by(models.NoteEntityLink.note_id)
                .having(func.count(func.distinct(models.NoteEntityLink.entity_id)) == len(wanted))
            )
            filters.append(models.Note.id.in_(matching))

        total = (await self.db.execute(
            select(func.count()).select_from(models.Note).where(*filters)
        )).scalar_one()

        sort_column = getattr(models.Note, params.sort)
        query = (
            select(models.Note)
            .options(selectinload(models.Note.entity_links))
            .where(*filters)
            .order_by(sort_column.asc() if params.order == "asc" else sort_column.desc(), models.Note.id)
            .offset((params.page - 1) * params.limit)
            .limit(params.limit)
            .execution_options(populate_existing=True)
        )
        notes = (await self.db.execute(query)).scalars().all()
        return schemas.NotesPage(
            data=[_note_to_schema(n) for n in notes],
            pagination=schemas.Pagination.build(params.page, params.limit, total),
        )

    async def create(self, user_id: uuid.UUID, data: schemas.NoteCreate) -> schemas.Note:
        if await self._title_taken(user_id, data.title):
            raise Conflict(DUPLICATE_TITLE)
        await self._validate_entities(user_id, [link.entity_id for link in data.entity_links])

        db_note = models.Note(user_id=user_id, title=data.title, content=data.content)
        self.db.add(db_note)
        await crud.flush_or_conflict(self.db, DUPLICATE_TITLE)

        if data.entity_links:
            self.db.add_all([
                models.NoteEntityLink(note_id=db_note.id, entity_id=link.entity_id, type=link.type)
                for link in data.entity_links
            ])
            await crud.flush_or_conflict(self.db, DUPLICATE_LINK)
        return await self.get_by_id(user_id, db_note.id)

    async def update(self, user_id: uuid.UUID, note_id: uuid.UUID, data: schemas.NoteUpdate) -> schemas.Note:
        """Partial update. An explicit ``entity_links`` list replaces every existing link."""
        await self._require_note(user_id, note_id)

        update_data = data.model_dump(exclude_unset=True, exclude={"entity_links"})
        if update_data.get("title") is None:
            update_data.pop("title", None)
        if "title" in update_data and await self._title_taken(user_id, update_data["title"], exclude_id=note_id):
            raise Conflict(DUPLICATE_TITLE)
        if data.entity_links is not None:
            await self._validate_entities(user_id, [link.entity_id for link in data.entity_links])

        if update_data:
            await crud.execute_or_conflict(
                self.db,
                update(models.Note)
                .where(models.Note.id == note_id)
                .where(models.Note.user_id == user_id)
                .values(**update_data),
                DUPLICATE_TITLE,
            )

        if data.entity_links is not None:
            dropped = await self._replace_links(note_id, data.entity_links)
            await self._cleanup_orphans(user_id, dropped)

        return await self.get_by_id(user_id, note_id)

    async def delete(self, user_id: uuid.UUID, note_id: uuid.UUID) -> schemas.NoteDeleteResult:
        """Deletes the note and its links, then removes entities left without any link.

        Suggestions generated for the note are kept, detached from it.
        """
        await self._require_note(user_id, note_id)

        linked = await self._linked_entity_ids(note_id)
        await self.db.execute(delete(models.NoteEntityLink).where(models.NoteEntityLink.note_id == note_id))
        await self.db.execute(
            update(models.Suggestion)
            .where(models.Suggestion.note_id == note_id)
            .where(models.Suggestion.user_id == user_id)
            .values(note_id=None)
        )
        await self.db.execute(
            delete(models.Note)
            .where(models.Note.id == note_id)
            .where(models.Note.user_id == user_id)
        )
        removed = await self._cleanup_orphans(user_id, linked)
        return schemas.NoteDeleteResult(id=note_id, removed_entity_ids=sorted(removed, key=str))

    # --- links ---

    async def _insert_link(
        self,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        entity_id: uuid.UUID,
        type: RelationshipType,
        if_missing: bool,
    ) -> Optional[models.NoteEntityLink]:
        await self._require_note(user_id, note_id)
        if not await crud.owned_entity_ids(self.db, user_id, [entity_id]):
            raise NotFound("Entity not found")
        if await self._get_link(note_id, entity_id) is not None:
            if if_missing:
                return None
            raise Conflict(DUPLICATE_LINK)

        link = models.NoteEntityLink(note_id=note_id, entity_id=entity_id, type=type)
        self.db.add(link)
        await crud.flush_or_conflict(self.db, DUPLICATE_LINK)
        await self.db.refresh(link)
        return link

    async def add_entity_link(
        self,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        entity_id: uuid.UUID,
        type: RelationshipType = RelationshipType.is_related_to,
    ) -> schemas.NoteEntityLink:
        link = await self._insert_link(user_id, note_id, entity_id, type, if_missing=False)
        return schemas.NoteEntityLink.model_validate(link)

    async def link_entity_if_missing(
        self,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        entity_id: uuid.UUID,
        type: RelationshipType = RelationshipType.is_related_to,
    ) -> bool:
        """Idempotent variant of add_entity_link. Returns True only when a link was created."""
        link = await self._insert_link(user_id, note_id, entity_id, type, if_missing=True)
        return link is not None

    async def update_entity_link(
        self,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        entity_id: uuid.UUID,
        type: RelationshipType,
    ) -> schemas.NoteEntityLink:
        await self._require_note(user_id, note_id)
        result = await self.db.execute(
            update(models.NoteEntityLink)
            .where(models.NoteEntityLink.note_id == note_id)
            .where(models.NoteEntityLink.entity_id == entity_id)
            .values(type=type)
        )
        if result.rowcount == 0:
            raise NotFound("Entity is not linked to this note")
        return schemas.NoteEntityLink.model_validate(await self._get_link(note_id, entity_id))

    async def remove_entity_link(self, user_id: uuid.UUID, note_id: uuid.UUID, entity_id: uuid.UUID) -> bool:
        """Removes one link. Returns True when the entity was deleted as an orphan."""
        await self._require_note(user_id, note_id)
        result = await self.db.execute(
            delete(models.NoteEntityLink)
            .where(models.NoteEntityLink.note_id == note_id)
            .where(models.NoteEntityLink.entity_id == entity_id)
        )
        if result.rowcount == 0:
            raise NotFound("Entity is not linked to this note")
        removed = await self._cleanup_orphans(user_id, [entity_id])
        return entity_id in removed
