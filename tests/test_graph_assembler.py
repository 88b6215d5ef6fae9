import uuid

import pytest

from notegraph.database import schemas
from notegraph.database.enums import EdgeKind, EntityType, NodeKind, RelationshipType
from notegraph.errors import NotFound, ValidationError
from notegraph.services.entity_store import EntityStore
from notegraph.services.graph_assembler import GraphAssembler, note_preview
from notegraph.services.note_store import NoteStore
from notegraph.services.relationship_store import RelationshipStore


async def _build(db, owner):
    entities = EntityStore(db)
    plato = await entities.create(owner, schemas.EntityCreate(name="Plato", type=EntityType.person, description="Athens"))
    aristotle = await entities.create(owner, schemas.EntityCreate(name="Aristotle", type=EntityType.person))
    lyceum = await entities.create(owner, schemas.EntityCreate(name="Lyceum", type=EntityType.school))
    await RelationshipStore(db).create(owner, schemas.RelationshipCreate(
        source_entity_id=aristotle.id, target_entity_id=plato.id, type=RelationshipType.is_student_of,
    ))
    await RelationshipStore(db).create(owner, schemas.RelationshipCreate(
        source_entity_id=aristotle.id, target_entity_id=lyceum.id, type=RelationshipType.is_related_to,
    ))
    note = await NoteStore(db).create(owner, schemas.NoteCreate(
        title="Republic", content="x" * 150, entity_links=[{"entity_id": plato.id}],
    ))
    return plato, aristotle, lyceum, note


def test_note_preview_truncates_long_content():
    assert note_preview(None) is None
    assert note_preview("short") == "short"
    assert note_preview("y" * 100) == "y" * 100
    assert note_preview("y" * 101) == "y" * 100 + "..."


@pytest.mark.asyncio
async def test_get_graph_nodes_and_edges(db, owner, other_owner):
    plato, aristotle, lyceum, note = await _build(db, owner)
    await EntityStore(db).create(other_owner, schemas.EntityCreate(name="Hidden", type=EntityType.person))

    graph = await GraphAssembler(db).get_graph(owner)

    kinds = {n.id: n.kind for n in graph.nodes}
    assert kinds == {
        plato.id: NodeKind.entity,
        aristotle.id: NodeKind.entity,
        lyceum.id: NodeKind.entity,
        note.id: NodeKind.note,
    }
    note_node = next(n for n in graph.nodes if n.id == note.id)
    assert note_node.label == "Republic"
    assert note_node.note_preview == "x" * 100 + "..."
    plato_node = next(n for n in graph.nodes if n.id == plato.id)
    assert plato_node.entity_type == EntityType.person
    assert plato_node.description == "Athens"

    edge_ids = {e.id for e in graph.edges}
    assert edge_ids == {
        f"note_entity:{note.id}:{plato.id}",
        f"relationship:{aristotle.id}:{plato.id}",
        f"relationship:{aristotle.id}:{lyceum.id}",
    }
    link = next(e for e in graph.edges if e.kind == EdgeKind.note_entity)
    assert (link.source, link.target, link.type) == (note.id, plato.id, RelationshipType.is_related_to)


@pytest.mark.asyncio
async def test_get_graph_is_stable(db, owner):
    await _build(db, owner)
    assembler = GraphAssembler(db)
    assert await assembler.get_graph(owner) == await assembler.get_graph(owner)


@pytest.mark.asyncio
async def test_neighborhood_respects_levels(db, owner):
    plato, aristotle, lyceum, note = await _build(db, owner)
    assembler = GraphAssembler(db)

    one = await assembler.get_neighborhood(owner, note.id, NodeKind.note, levels=1)
    assert {n.id for n in one.nodes} == {note.id, plato.id}
    assert [e.id for e in one.edges] == [f"note_entity:{note.id}:{plato.id}"]

    two = await assembler.get_neighborhood(owner, note.id, NodeKind.note, levels=2)
    assert {n.id for n in two.nodes} == {note.id, plato.id, aristotle.id}

    three = await assembler.get_neighborhood(owner, note.id, NodeKind.note, levels=3)
    assert {n.id for n in three.nodes} == {note.id, plato.id, aristotle.id, lyceum.id}
    assert len(three.edges) == 3


@pytest.mark.asyncio
async def test_neighborhood_rejects_foreign_center_and_bad_levels(db, owner, other_owner):
    plato, _, _, _ = await _build(db, owner)
    assembler = GraphAssembler(db)
    with pytest.raises(NotFound):
        await assembler.get_neighborhood(other_owner, plato.id, NodeKind.entity)
    with pytest.raises(NotFound):
        await assembler.get_neighborhood(owner, uuid.uuid4(), NodeKind.note)
    with pytest.raises(ValidationError):
        await assembler.get_neighborhood(owner, plato.id, NodeKind.entity, levels=4)
