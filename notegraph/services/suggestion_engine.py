"""
AI suggestion lifecycle: generation, listing, and the pending -> accepted/rejected
state machine with its acceptance side effects.

A suggestion leaves ``pending`` exactly once. The status write is a single
conditional UPDATE guarded on ``status = 'pending'``, so of two concurrent
transitions at most one succeeds. Acceptance side effects run on the same
session as the status write and are idempotent with respect to existing links.
"""
import hashlib
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol

import pydantic
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import models, schemas
from ..database.enums import EntityType, RelationshipType, SuggestionStatus, SuggestionType
from ..errors import (
    AIError,
    ContentTooShort,
    InvalidOperation,
    InvalidStateTransition,
    NotFound,
    ResponseValidationError,
    ValidationError,
)
from .entity_store import EntityStore
from .note_store import NoteStore
from .profile_gate import ProfileGate

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 10
MAX_ENTITY_NAME = 100
MAX_ENTITY_DESCRIPTION = 1000

SECTION_HEADINGS = {
    SuggestionType.quote: "## Quotes",
    SuggestionType.summary: "## Summary",
}

SYSTEM_PROMPT = """You analyse a user's research note and propose edits to their personal knowledge graph.
Return between 2 and 5 suggestions as JSON matching the provided schema. Suggestion types:
- quote: a short, verbatim excerpt from the note worth keeping. Put the excerpt in "content".
- summary: a concise summary of the note. Put the summary in "content".
- new_entity: a person, work, epoch, idea, school or system mentioned in the note that is not in the user's entity list.
  Set "entity_name" to the plain name and "entity_type" to its type; "content" is a one-sentence description.
- existing_entity_link: an entity from the user's entity list that the note discusses but is not linked yet.
  Set "suggested_entity_id" to that entity's id exactly as listed.
"name" is a short human-readable label for the suggestion. Do not suggest entities that are already linked."""


class AIClient(Protocol):
    async def get_structured_response(self, *, system_prompt: str, user_prompt: str, schema: Dict[str, Any]) -> Any:
        ...


def build_user_prompt(note: schemas.Note, roster: Iterable[models.Entity]) -> str:
    linked = "\n".join(f"- {e.name} ({e.type.value})" for e in note.entities) or "(none)"
    entity_list = "\n".join(f"- id={e.id} name={e.name} type={e.type.value}" for e in roster) or "(none)"
    return (
        f"Note title: {note.title}\n\n"
        f"Note content:\n{note.content}\n\n"
        f"Entities already linked to this note:\n{linked}\n\n"
        f"User's entity list:\n{entity_list}"
    )


def plain_entity_name(label: str) -> str:
    """'New Entity: Aristotle' -> 'Aristotle'. Labels without a colon are returned stripped."""
    if ":" in label:
        return label.split(":", 1)[1].strip()
    return label.strip()


def append_section(content: Optional[str], heading: str, text: str) -> str:
    section = f"{heading}\n\n{text}"
    return f"{content}\n\n{section}" if content else section


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class SuggestionEngine:
    def __init__(
        self,
        db: AsyncSession,
        ai_client: AIClient,
        profiles: Optional[ProfileGate] = None,
        notes: Optional[NoteStore] = None,
        entities: Optional[EntityStore] = None,
        log_sessions: Optional[async_sessionmaker] = None,
    ) -> None:
        self.db = db
        self.ai_client = ai_client
        self.profiles = profiles or ProfileGate(db)
        self.notes = notes or NoteStore(db)
        self.entities = entities or EntityStore(db)
        # Error logs are written outside the caller's unit of work.
        self.log_sessions = log_sessions or async_sessionmaker(bind=db.bind, expire_on_commit=False)

    # --- generation ---

    async def _roster(self, user_id: uuid.UUID) -> List[models.Entity]:
        result = await self.db.execute(
            select(models.Entity).where(models.Entity.user_id == user_id).order_by(models.Entity.name)
        )
        return list(result.scalars().all())

    def _validate_batch(self, raw: Any, roster_ids: set) -> List[schemas.AISuggestion]:
        try:
            batch = schemas.AISuggestionBatch.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise ResponseValidationError(details={"errors": [err["msg"] for err in exc.errors()]}) from exc

        kept: List[schemas.AISuggestion] = []
        for item in batch.suggestions:
            if item.type == SuggestionType.existing_entity_link:
                if item.suggested_entity_id not in roster_ids:
                    logger.warning("Discarding link suggestion to unknown entity %s", item.suggested_entity_id)
                    continue
            elif item.suggested_entity_id is not None:
                item = item.model_copy(update={"suggested_entity_id": None})
            kept.append(item)
        if not kept:
            raise ResponseValidationError("AI response contained no usable suggestions")
        return kept

    async def _log_ai_error(self, user_id: uuid.UUID, error: AIError, note_content: str) -> None:
        """Persists a failed generation in a separate session; the caller's pending work is left alone."""
        model_name = getattr(self.ai_client, "model_name", None)
        async with self.log_sessions() as log_db:
            log_db.add(models.AIErrorLog(
                user_id=user_id,
                model_name=model_name if isinstance(model_name, str) else "unknown",
                source_text_hash=content_hash(note_content),
                error_code=error.code,
                error_message=error.message,
            ))
            try:
                await log_db.commit()
            except SQLAlchemyError:
                logger.exception("Failed to record AI error for user %s", user_id)
                await log_db.rollback()

    async def generate(self, user_id: uuid.UUID, note_id: uuid.UUID) -> schemas.AnalyzeNoteResponse:
        await self.profiles.ensure_ai_consent(user_id)
        note = await self.notes.get_by_id(user_id, note_id)
        content = note.content or ""
        if len(content) < MIN_CONTENT_LENGTH:
            raise ContentTooShort(f"Note content must be at least {MIN_CONTENT_LENGTH} characters long")

        roster = await self._roster(user_id)
        roster_ids = {e.id for e in roster}
        user_prompt = build_user_prompt(note, roster)

        started = time.perf_counter()
        try:
            raw = await self.ai_client.get_structured_response(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=user_prompt,
                schema=schemas.AISuggestionBatch.model_json_schema(),
            )
            duration_ms = int((time.perf_counter() - started) * 1000)
            items = self._validate_batch(raw, roster_ids)
        except AIError as exc:
            logger.warning("Suggestion generation failed for note %s: %s", note_id, exc)
            await self._log_ai_error(user_id, exc, content)
            raise

        rows = [
            models.Suggestion(
                user_id=user_id,
                note_id=note_id,
                type=item.type,
                status=SuggestionStatus.pending,
                name=item.name,
                content=item.content,
                suggested_entity_id=item.suggested_entity_id,
                entity_name=item.entity_name,
                entity_type=item.entity_type,
                generation_duration_ms=duration_ms,
            )
            for item in items
        ]
        self.db.add_all(rows)
        await self.db.flush()
        logger.info("Generated %d suggestion(s) for note %s in %d ms", len(rows), note_id, duration_ms)

        return schemas.AnalyzeNoteResponse(
            note_id=note_id,
            suggestions=[schemas.Suggestion.model_validate(r) for r in rows],
            generation_duration_ms=duration_ms,
        )

    # --- reads ---

    async def _get_row(self, user_id: uuid.UUID, suggestion_id: uuid.UUID) -> models.Suggestion:
        result = await self.db.execute(
            select(models.Suggestion)
            .where(models.Suggestion.id == suggestion_id)
            .where(models.Suggestion.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        db_suggestion = result.scalars().first()
        if db_suggestion is None:
            raise NotFound("Suggestion not found")
        return db_suggestion

    async def get_by_id(self, user_id: uuid.UUID, suggestion_id: uuid.UUID) -> schemas.Suggestion:
        return schemas.Suggestion.model_validate(await self._get_row(user_id, suggestion_id))

    async def list(
        self,
        user_id: uuid.UUID,
        note_id: uuid.UUID,
        statuses: Optional[Iterable[SuggestionStatus]] = None,
    ) -> schemas.SuggestionsList:
        # Raises NotFound for a missing or foreign note.
        await self.notes.get_by_id(user_id, note_id)
        query = (
            select(models.Suggestion)
            .where(models.Suggestion.user_id == user_id)
            .where(models.Suggestion.note_id == note_id)
            .order_by(models.Suggestion.created_at.desc(), models.Suggestion.id)
        )
        statuses = list(statuses or [])
        if statuses:
            query = query.where(models.Suggestion.status.in_(statuses))
        result = await self.db.execute(query)
        return schemas.SuggestionsList(data=[schemas.Suggestion.model_validate(s) for s in result.scalars().all()])

    # --- state machine ---

    async def update_status(self, user_id: uuid.UUID, suggestion_id: uuid.UUID, new_status) -> schemas.Suggestion:
        try:
            new_status = SuggestionStatus(new_status)
        except ValueError as exc:
            raise ValidationError("Status must be 'accepted' or 'rejected'") from exc
        if new_status == SuggestionStatus.pending:
            raise ValidationError("Status must be 'accepted' or 'rejected'")

        current = await self._get_row(user_id, suggestion_id)
        if current.status != SuggestionStatus.pending:
            raise InvalidStateTransition(
                f'Cannot update suggestion with status "{current.status.value}". '
                "Only pending suggestions can be updated."
            )

        result = await self.db.execute(
            update(models.Suggestion)
            .where(models.Suggestion.id == suggestion_id)
            .where(models.Suggestion.user_id == user_id)
            .where(models.Suggestion.status == SuggestionStatus.pending)
            .values(status=new_status)
        )
        if result.rowcount != 1:
            raise InvalidStateTransition("Suggestion was already accepted or rejected")

        if new_status == SuggestionStatus.accepted:
            await self._accept(user_id, current)

        return await self.get_by_id(user_id, suggestion_id)

    async def _accept(self, user_id: uuid.UUID, suggestion: models.Suggestion) -> None:
        if suggestion.note_id is None:
            raise NotFound("Note not found")
        if suggestion.type == SuggestionType.new_entity:
            await self._accept_new_entity(user_id, suggestion)
        elif suggestion.type == SuggestionType.existing_entity_link:
            if suggestion.suggested_entity_id is None:
                raise InvalidOperation("No entity ID provided")
            await self.notes.link_entity_if_missing(
                user_id, suggestion.note_id, suggestion.suggested_entity_id, RelationshipType.is_related_to
            )
        else:
            await self._append_to_note(user_id, suggestion)

    async def _accept_new_entity(self, user_id: uuid.UUID, suggestion: models.Suggestion) -> None:
        name = (suggestion.entity_name or "").strip() or plain_entity_name(suggestion.name)
        name = name[:MAX_ENTITY_NAME].strip()
        if not name:
            raise InvalidOperation("Suggestion does not carry an entity name")

        entity = await self.entities.find_by_name(user_id, name)
        if entity is None:
            description = suggestion.content
            if len(description) > MAX_ENTITY_DESCRIPTION:
                logger.debug(
                    "Truncating description of suggestion %s from %d to %d chars",
                    suggestion.id, len(description), MAX_ENTITY_DESCRIPTION,
                )
                description = description[:MAX_ENTITY_DESCRIPTION]
            entity = await self.entities.create(user_id, schemas.EntityCreate(
                name=name,
                type=suggestion.entity_type or EntityType.person,
                description=description,
            ))
            logger.debug("Created entity %s from suggestion %s", entity.id, suggestion.id)
        await self.notes.link_entity_if_missing(user_id, suggestion.note_id, entity.id, RelationshipType.is_related_to)

    async def _append_to_note(self, user_id: uuid.UUID, suggestion: models.Suggestion) -> None:
        note = await self.notes.get_by_id(user_id, suggestion.note_id)
        new_content = append_section(note.content, SECTION_HEADINGS[suggestion.type], suggestion.content)
        try:
            data = schemas.NoteUpdate(content=new_content)
        except pydantic.ValidationError as exc:
            raise ValidationError("Note content would exceed the maximum length") from exc
        await self.notes.update(user_id, suggestion.note_id, data)
