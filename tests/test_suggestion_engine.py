import logging
import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from notegraph.database import models, schemas
from notegraph.database.enums import EntityType, RelationshipType, SuggestionStatus, SuggestionType
from notegraph.errors import (
    ConsentRequired,
    ContentTooShort,
    InvalidOperation,
    InvalidStateTransition,
    NotFound,
    RateLimitError,
    ResponseValidationError,
    ValidationError,
)
from notegraph.services.entity_store import EntityStore
from notegraph.services.note_store import NoteStore
from notegraph.services.profile_gate import ProfileGate
from notegraph.services.suggestion_engine import SuggestionEngine, append_section, plain_entity_name

NOTE_CONTENT = "Aristotle studied under Plato at the Academy."


def _ai(*suggestions):
    client = AsyncMock()
    client.get_structured_response.return_value = {"suggestions": list(suggestions)}
    return client


async def _consenting_note(db, owner, content=NOTE_CONTENT, title="Academy"):
    await ProfileGate(db).set_ai_consent(owner, True)
    return await NoteStore(db).create(owner, schemas.NoteCreate(title=title, content=content))


async def _add_suggestion(db, owner, note_id, type, **fields):
    row = models.Suggestion(
        user_id=owner,
        note_id=note_id,
        type=type,
        status=SuggestionStatus.pending,
        name=fields.pop("name", "label"),
        content=fields.pop("content", "text"),
        generation_duration_ms=5,
        **fields,
    )
    db.add(row)
    await db.flush()
    return row.id


def test_plain_entity_name_and_append_section():
    assert plain_entity_name("New Entity: Aristotle") == "Aristotle"
    assert plain_entity_name("Plato") == "Plato"
    assert append_section("C", "## Quotes", "Q") == "C\n\n## Quotes\n\nQ"
    assert append_section(None, "## Summary", "S") == "## Summary\n\nS"


@pytest.mark.asyncio
async def test_generate_requires_consent_without_calling_ai(db, owner):
    note = await NoteStore(db).create(owner, schemas.NoteCreate(title="No consent", content=NOTE_CONTENT))
    ai = _ai({"type": "summary", "name": "s", "content": "c"})

    with pytest.raises(ConsentRequired):
        await SuggestionEngine(db, ai).generate(owner, note.id)

    await ProfileGate(db).set_ai_consent(owner, False)
    with pytest.raises(ConsentRequired):
        await SuggestionEngine(db, ai).generate(owner, note.id)
    ai.get_structured_response.assert_not_called()


@pytest.mark.asyncio
async def test_generate_preconditions(db, owner):
    short = await _consenting_note(db, owner, content="too short")
    ai = _ai({"type": "summary", "name": "s", "content": "c"})
    engine = SuggestionEngine(db, ai)

    with pytest.raises(ContentTooShort):
        await engine.generate(owner, short.id)
    with pytest.raises(NotFound):
        await engine.generate(owner, uuid.uuid4())
    ai.get_structured_response.assert_not_called()


@pytest.mark.asyncio
async def test_generate_persists_pending_suggestions(db, owner):
    plato = await EntityStore(db).create(owner, schemas.EntityCreate(name="Plato", type=EntityType.person))
    note = await _consenting_note(db, owner)
    ai = _ai(
        {"type": "quote", "name": "Key line", "content": "studied under Plato"},
        {"type": "existing_entity_link", "name": "Link to: Plato", "content": "Mentor", "suggested_entity_id": str(plato.id)},
        {"type": "existing_entity_link", "name": "Link to: Ghost", "content": "?", "suggested_entity_id": str(uuid.uuid4())},
    )

    result = await SuggestionEngine(db, ai).generate(owner, note.id)

    assert result.note_id == note.id
    assert [s.type for s in result.suggestions] == [SuggestionType.quote, SuggestionType.existing_entity_link]
    assert all(s.status == SuggestionStatus.pending for s in result.suggestions)
    assert result.suggestions[1].suggested_entity_id == plato.id
    assert result.generation_duration_ms >= 0

    kwargs = ai.get_structured_response.call_args.kwargs
    assert NOTE_CONTENT in kwargs["user_prompt"]
    assert str(plato.id) in kwargs["user_prompt"]
    assert kwargs["schema"]["type"] == "object"

    listed = await SuggestionEngine(db, ai).list(owner, note.id)
    assert len(listed.data) == 2


@pytest.mark.asyncio
async def test_generate_rejects_malformed_response_and_logs_it(db, owner):
    note = await _consenting_note(db, owner)
    ai = AsyncMock()
    ai.get_structured_response.return_value = {"suggestions": [{"type": "poem", "name": "x", "content": "y"}]}

    with pytest.raises(ResponseValidationError):
        await SuggestionEngine(db, ai).generate(owner, note.id)

    logs = (await db.execute(select(models.AIErrorLog))).scalars().all()
    assert len(logs) == 1
    assert logs[0].error_code == ResponseValidationError.code
    assert len(logs[0].source_text_hash) == 64


@pytest.mark.asyncio
async def test_generate_propagates_typed_ai_errors(db, owner):
    note = await _consenting_note(db, owner)
    ai = AsyncMock()
    ai.get_structured_response.side_effect = RateLimitError()

    with pytest.raises(RateLimitError) as excinfo:
        await SuggestionEngine(db, ai).generate(owner, note.id)
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_accept_new_entity_scenario(db, owner):
    note = await _consenting_note(db, owner)
    ai = _ai({"type": "new_entity", "name": "New Entity: Aristotle", "content": "Greek philosopher"})
    engine = SuggestionEngine(db, ai)
    generated = await engine.generate(owner, note.id)

    accepted = await engine.update_status(owner, generated.suggestions[0].id, SuggestionStatus.accepted)

    assert accepted.status == SuggestionStatus.accepted
    entity = await EntityStore(db).find_by_name(owner, "Aristotle")
    assert entity is not None
    assert entity.type == EntityType.person
    assert entity.description == "Greek philosopher"
    refreshed = await NoteStore(db).get_by_id(owner, note.id)
    assert [(e.id, e.link_type) for e in refreshed.entities] == [(entity.id, RelationshipType.is_related_to)]


@pytest.mark.asyncio
async def test_accept_new_entity_reuses_existing_and_prefers_clean_name(db, owner):
    note = await _consenting_note(db, owner)
    existing = await EntityStore(db).create(owner, schemas.EntityCreate(name="Lyceum", type=EntityType.school))
    await NoteStore(db).add_entity_link(owner, note.id, existing.id)
    suggestion_id = await _add_suggestion(
        db, owner, note.id, SuggestionType.new_entity,
        name="School: The Lyceum", entity_name="Lyceum", entity_type=EntityType.school,
    )

    await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.accepted)

    page = await EntityStore(db).list(owner)
    assert [(e.name, e.note_count) for e in page] == [("Lyceum", 1)]


@pytest.mark.asyncio
async def test_accept_existing_link_is_idempotent(db, owner):
    note = await _consenting_note(db, owner)
    plato = await EntityStore(db).create(owner, schemas.EntityCreate(name="Plato", type=EntityType.person))
    await NoteStore(db).add_entity_link(owner, note.id, plato.id, RelationshipType.criticizes)
    suggestion_id = await _add_suggestion(
        db, owner, note.id, SuggestionType.existing_entity_link, suggested_entity_id=plato.id,
    )

    result = await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.accepted)

    assert result.status == SuggestionStatus.accepted
    refreshed = await NoteStore(db).get_by_id(owner, note.id)
    assert [(e.id, e.link_type) for e in refreshed.entities] == [(plato.id, RelationshipType.criticizes)]


@pytest.mark.asyncio
async def test_accept_existing_link_without_entity_id_fails(db, owner):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(db, owner, note.id, SuggestionType.existing_entity_link)
    with pytest.raises(InvalidOperation):
        await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.accepted)


@pytest.mark.asyncio
@pytest.mark.parametrize("type,heading", [(SuggestionType.quote, "## Quotes"), (SuggestionType.summary, "## Summary")])
async def test_accept_appends_section(db, owner, type, heading):
    await ProfileGate(db).set_ai_consent(owner, True)
    note = await NoteStore(db).create(owner, schemas.NoteCreate(title="Short", content="C"))
    suggestion_id = await _add_suggestion(db, owner, note.id, type, content="Q")

    await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.accepted)

    refreshed = await NoteStore(db).get_by_id(owner, note.id)
    assert refreshed.content == f"C\n\n{heading}\n\nQ"


@pytest.mark.asyncio
@pytest.mark.parametrize("first", [SuggestionStatus.accepted, SuggestionStatus.rejected])
@pytest.mark.parametrize("second", [SuggestionStatus.accepted, SuggestionStatus.rejected])
async def test_terminal_states_are_final(db, owner, first, second):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(db, owner, note.id, SuggestionType.summary)
    engine = SuggestionEngine(db, AsyncMock())

    await engine.update_status(owner, suggestion_id, first)
    with pytest.raises(InvalidStateTransition):
        await engine.update_status(owner, suggestion_id, second)


@pytest.mark.asyncio
async def test_reject_has_no_side_effects(db, owner):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(db, owner, note.id, SuggestionType.quote, content="Q")
    result = await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.rejected)
    assert result.status == SuggestionStatus.rejected
    assert (await NoteStore(db).get_by_id(owner, note.id)).content == NOTE_CONTENT


@pytest.mark.asyncio
async def test_update_status_validation_and_ownership(db, owner, other_owner):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(db, owner, note.id, SuggestionType.summary)
    engine = SuggestionEngine(db, AsyncMock())

    with pytest.raises(ValidationError):
        await engine.update_status(owner, suggestion_id, SuggestionStatus.pending)
    with pytest.raises(ValidationError):
        await engine.update_status(owner, suggestion_id, "archived")
    with pytest.raises(NotFound):
        await engine.update_status(other_owner, suggestion_id, SuggestionStatus.accepted)


@pytest.mark.asyncio
async def test_list_filters_by_status_newest_first(db, owner, other_owner):
    note = await _consenting_note(db, owner)
    first = await _add_suggestion(db, owner, note.id, SuggestionType.summary)
    second = await _add_suggestion(db, owner, note.id, SuggestionType.quote)
    engine = SuggestionEngine(db, AsyncMock())
    await engine.update_status(owner, first, SuggestionStatus.rejected)

    everything = await engine.list(owner, note.id)
    assert [s.id for s in everything.data] == [second, first]
    pending = await engine.list(owner, note.id, [SuggestionStatus.pending])
    assert [s.id for s in pending.data] == [second]
    with pytest.raises(NotFound):
        await engine.list(other_owner, note.id)


@pytest.mark.asyncio
async def test_failed_generate_leaves_caller_session_uncommitted(db, owner, session_factory):
    note = await _consenting_note(db, owner)
    await db.commit()
    db.add(models.Entity(user_id=owner, name="Uncommitted", type=EntityType.person))
    ai = AsyncMock()
    ai.get_structured_response.side_effect = RateLimitError()

    with pytest.raises(RateLimitError):
        await SuggestionEngine(db, ai).generate(owner, note.id)
    await db.rollback()

    async with session_factory() as fresh:
        names = (await fresh.execute(select(models.Entity.name))).scalars().all()
        logs = (await fresh.execute(select(models.AIErrorLog))).scalars().all()
    assert names == []
    assert [log.error_code for log in logs] == [RateLimitError.code]


@pytest.mark.asyncio
async def test_accept_new_entity_with_blank_entity_name_falls_back_to_label(db, owner):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(
        db, owner, note.id, SuggestionType.new_entity, name="New Entity: Aristotle", entity_name="  ",
    )

    await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.accepted)

    assert await EntityStore(db).find_by_name(owner, "Aristotle") is not None


@pytest.mark.asyncio
async def test_accept_new_entity_truncates_long_description(db, owner, caplog):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(
        db, owner, note.id, SuggestionType.new_entity, name="New Entity: Aristotle", content="x" * 1500,
    )

    with caplog.at_level(logging.DEBUG, logger="notegraph.services.suggestion_engine"):
        await SuggestionEngine(db, AsyncMock()).update_status(owner, suggestion_id, SuggestionStatus.accepted)

    entity = await EntityStore(db).find_by_name(owner, "Aristotle")
    assert len(entity.description) == 1000
    assert "Truncating description" in caplog.text


@pytest.mark.asyncio
async def test_concurrent_transition_loses_conditional_write(db, owner, session_factory):
    note = await _consenting_note(db, owner)
    suggestion_id = await _add_suggestion(db, owner, note.id, SuggestionType.summary)
    await db.commit()

    engine = SuggestionEngine(db, AsyncMock())
    read_row = engine._get_row

    async def read_then_reject_elsewhere(user_id, sid):
        row = await read_row(user_id, sid)
        # Another request rejects the suggestion after this one has seen it pending.
        async with session_factory() as other:
            await SuggestionEngine(other, AsyncMock()).update_status(user_id, sid, SuggestionStatus.rejected)
            await other.commit()
        return row

    engine._get_row = read_then_reject_elsewhere
    with pytest.raises(InvalidStateTransition):
        await engine.update_status(owner, suggestion_id, SuggestionStatus.accepted)

    async with session_factory() as fresh:
        status = (await fresh.execute(
            select(models.Suggestion.status).where(models.Suggestion.id == suggestion_id)
        )).scalar_one()
    assert status == SuggestionStatus.rejected
