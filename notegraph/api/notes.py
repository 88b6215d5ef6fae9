import uuid
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import schemas
from ..database.database import get_db
from ..database.enums import SuggestionStatus
from ..services.note_store import NoteStore
from ..services.suggestion_engine import SuggestionEngine
from .deps import get_ai_client, get_owner_id

router = APIRouter(
    prefix="/api/notes",
    tags=["notes"],
)


@router.post("/", response_model=schemas.Note, status_code=status.HTTP_201_CREATED)
async def create_note_endpoint(
    note: schemas.NoteCreate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a note, optionally linked to existing entities, and commit the transaction.
    """
    created = await NoteStore(db).create(owner_id, note)
    await db.commit()
    return created


@router.get("/", response_model=schemas.NotesPage)
async def read_notes_endpoint(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort: Literal["created_at", "updated_at", "title"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    search: Optional[str] = None,
    entity_ids: List[uuid.UUID] = Query(default=[]),
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Retrieve notes page by page. ``entity_ids`` keeps notes linked to all of the given entities.
    """
    params = schemas.NoteListParams(
        page=page, limit=limit, sort=sort, order=order, search=search, entity_ids=entity_ids,
    )
    return await NoteStore(db).list(owner_id, params)


@router.get("/{note_id}", response_model=schemas.Note)
async def read_note_endpoint(
    note_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await NoteStore(db).get_by_id(owner_id, note_id)


@router.patch("/{note_id}", response_model=schemas.Note)
async def update_note_endpoint(
    note_id: uuid.UUID,
    note: schemas.NoteUpdate,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a note. A supplied ``entity_links`` list replaces all existing links.
    """
    updated = await NoteStore(db).update(owner_id, note_id, note)
    await db.commit()
    return updated


@router.delete("/{note_id}", response_model=schemas.NoteDeleteResult)
async def delete_note_endpoint(
    note_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a note. The response lists entities removed because no note links to them anymore.
    """
    result = await NoteStore(db).delete(owner_id, note_id)
    await db.commit()
    return result


# --- Entity links ---

@router.post("/{note_id}/entities", response_model=schemas.NoteEntityLink, status_code=status.HTTP_201_CREATED)
async def add_note_entity_endpoint(
    note_id: uuid.UUID,
    link: schemas.AddEntityLinkRequest,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    created = await NoteStore(db).add_entity_link(owner_id, note_id, link.entity_id, link.type)
    await db.commit()
    return created


@router.patch("/{note_id}/entities/{entity_id}", response_model=schemas.NoteEntityLink)
async def update_note_entity_endpoint(
    note_id: uuid.UUID,
    entity_id: uuid.UUID,
    link: schemas.UpdateEntityLinkRequest,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    updated = await NoteStore(db).update_entity_link(owner_id, note_id, entity_id, link.type)
    await db.commit()
    return updated


@router.delete("/{note_id}/entities/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_note_entity_endpoint(
    note_id: uuid.UUID,
    entity_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    await NoteStore(db).remove_entity_link(owner_id, note_id, entity_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- AI suggestions ---

@router.post("/{note_id}/analyze", response_model=schemas.AnalyzeNoteResponse, status_code=status.HTTP_201_CREATED)
async def analyze_note_endpoint(
    note_id: uuid.UUID,
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
    ai_client=Depends(get_ai_client),
):
    """
    Ask the AI provider for suggestions on this note and store them as pending.
    """
    result = await SuggestionEngine(db, ai_client).generate(owner_id, note_id)
    await db.commit()
    return result


@router.get("/{note_id}/suggestions", response_model=schemas.SuggestionsList)
async def list_note_suggestions_endpoint(
    note_id: uuid.UUID,
    status_filter: List[SuggestionStatus] = Query(default=[], alias="status"),
    owner_id: uuid.UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
    ai_client=Depends(get_ai_client),
):
    return await SuggestionEngine(db, ai_client).list(owner_id, note_id, status_filter)
