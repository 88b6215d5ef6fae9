"""
Row-level helpers shared by the stores.

Nothing here commits: the caller owns the unit of work.
"""
import uuid
from typing import Iterable, Set

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from ..errors import Conflict


async def flush_or_conflict(db: AsyncSession, message: str) -> None:
    """Flushes pending writes, turning a unique-constraint violation into Conflict.

    The session is rolled back first, since a failed flush leaves it unusable.
    """
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict(message) from exc


async def execute_or_conflict(db: AsyncSession, statement, message: str):
    """Executes a write statement, turning a unique-constraint violation into Conflict."""
    try:
        return await db.execute(statement)
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict(message) from exc


async def owned_entity_ids(db: AsyncSession, user_id: uuid.UUID, entity_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
    """Returns the subset of ``entity_ids`` that exist and belong to ``user_id`` (one query)."""
    ids = set(entity_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(models.Entity.id)
        .where(models.Entity.user_id == user_id)
        .where(models.Entity.id.in_(list(ids)))
    )
    return set(result.scalars().all())


async def note_exists(db: AsyncSession, user_id: uuid.UUID, note_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(models.Note.id)
        .where(models.Note.id == note_id)
        .where(models.Note.user_id == user_id)
    )
    return result.scalar_one_or_none() is not None


async def referenced_entity_ids(db: AsyncSession, entity_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
    """Returns the subset of ``entity_ids`` that still have at least one note link."""
    ids = set(entity_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(models.NoteEntityLink.entity_id)
        .where(models.NoteEntityLink.entity_id.in_(list(ids)))
        .distinct()
    )
    return set(result.scalars().all())


async def purge_entities(db: AsyncSession, user_id: uuid.UUID, entity_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
    """Deletes owned entities together with every link and relationship touching them.

    Ids not owned by ``user_id`` are ignored. Returns the ids actually removed.
    """
    ids = await owned_entity_ids(db, user_id, entity_ids)
    if not ids:
        return set()
    # Referencing rows first, so the foreign keys hold after every statement.
    await db.execute(delete(models.NoteEntityLink).where(models.NoteEntityLink.entity_id.in_(list(ids))))
    await db.execute(
        delete(models.Relationship)
        .where(models.Relationship.user_id == user_id)
        .where(or_(models.Relationship.source_entity_id.in_(list(ids)), models.Relationship.target_entity_id.in_(list(ids))))
    )
    await db.execute(
        delete(models.Entity)
        .where(models.Entity.user_id == user_id)
        .where(models.Entity.id.in_(list(ids)))
    )
    return ids
