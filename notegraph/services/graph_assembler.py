"""
Read-only graph projections of a user's entities and notes.

``get_graph`` returns the whole graph in four queries. ``get_neighborhood``
walks outwards from one entity or note, one batch of queries per level, and
stops adding nodes once ``MAX_NODES`` is reached.
"""
import logging
import time
import uuid
from typing import Dict, Iterable, List, Set, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import models, schemas
from ..database.enums import EdgeKind, NodeKind
from ..errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

MAX_NODES = 200
PREVIEW_LENGTH = 100
MIN_LEVELS, MAX_LEVELS, DEFAULT_LEVELS = 1, 3, 2

NodeKey = Tuple[NodeKind, uuid.UUID]


def note_preview(content: str | None) -> str | None:
    if not content:
        return None
    if len(content) > PREVIEW_LENGTH:
        return content[:PREVIEW_LENGTH] + "..."
    return content


def entity_node(entity: models.Entity) -> schemas.GraphNode:
    return schemas.GraphNode(
        id=entity.id,
        kind=NodeKind.entity,
        label=entity.name,
        entity_type=entity.type,
        description=entity.description,
        created_at=entity.created_at,
    )


def note_node(note: models.Note) -> schemas.GraphNode:
    return schemas.GraphNode(
        id=note.id,
        kind=NodeKind.note,
        label=note.title,
        note_preview=note_preview(note.content),
        created_at=note.created_at,
    )


def link_edge(link: models.NoteEntityLink) -> schemas.GraphEdge:
    return schemas.GraphEdge(
        id=f"{EdgeKind.note_entity.value}:{link.note_id}:{link.entity_id}",
        kind=EdgeKind.note_entity,
        source=link.note_id,
        target=link.entity_id,
        type=link.type,
    )


def relationship_edge(rel: models.Relationship) -> schemas.GraphEdge:
    return schemas.GraphEdge(
        id=f"{EdgeKind.relationship.value}:{rel.source_entity_id}:{rel.target_entity_id}",
        kind=EdgeKind.relationship,
        source=rel.source_entity_id,
        target=rel.target_entity_id,
        type=rel.type,
    )


class GraphAssembler:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_graph(self, user_id: uuid.UUID) -> schemas.Graph:
        entities = (await self.db.execute(
            select(models.Entity).where(models.Entity.user_id == user_id).order_by(models.Entity.created_at)
        )).scalars().all()
        notes = (await self.db.execute(
            select(models.Note).where(models.Note.user_id == user_id).order_by(models.Note.created_at)
        )).scalars().all()
        links = (await self.db.execute(
            select(models.NoteEntityLink)
            .join(models.Note, models.Note.id == models.NoteEntityLink.note_id)
            .where(models.Note.user_id == user_id)
            .order_by(models.NoteEntityLink.created_at)
        )).scalars().all()
        relationships = (await self.db.execute(
            select(models.Relationship)
            .where(models.Relationship.user_id == user_id)
            .order_by(models.Relationship.created_at)
        )).scalars().all()

        nodes = [entity_node(e) for e in entities] + [note_node(n) for n in notes]
        edges = [link_edge(link) for link in links] + [relationship_edge(r) for r in relationships]
        return schemas.Graph(nodes=nodes, edges=edges)

    async def _center_exists(self, user_id: uuid.UUID, center_id: uuid.UUID, center_type: NodeKind) -> bool:
        model = models.Entity if center_type == NodeKind.entity else models.Note
        result = await self.db.execute(
            select(model.id).where(model.id == center_id).where(model.user_id == user_id)
        )
        return result.first() is not None

    async def _expand(
        self,
        user_id: uuid.UUID,
        frontier: Iterable[NodeKey],
        edges: Dict[str, schemas.GraphEdge],
    ) -> List[NodeKey]:
        """Records every edge touching the frontier and returns the nodes on the other side."""
        entity_ids = [node_id for kind, node_id in frontier if kind == NodeKind.entity]
        note_ids = [node_id for kind, node_id in frontier if kind == NodeKind.note]
        neighbors: List[NodeKey] = []

        if entity_ids:
            rels = (await self.db.execute(
                select(models.Relationship)
                .where(models.Relationship.user_id == user_id)
                .where(or_(
                    models.Relationship.source_entity_id.in_(entity_ids),
                    models.Relationship.target_entity_id.in_(entity_ids),
                ))
            )).scalars().all()
            for rel in rels:
                edge = relationship_edge(rel)
                edges[edge.id] = edge
                neighbors.append((NodeKind.entity, rel.source_entity_id))
                neighbors.append((NodeKind.entity, rel.target_entity_id))

        if entity_ids or note_ids:
            links = (await self.db.execute(
                select(models.NoteEntityLink)
                .join(models.Note, models.Note.id == models.NoteEntityLink.note_id)
                .where(models.Note.user_id == user_id)
                .where(or_(
                    models.NoteEntityLink.entity_id.in_(entity_ids),
                    models.NoteEntityLink.note_id.in_(note_ids),
                ))
            )).scalars().all()
            for link in links:
                edge = link_edge(link)
                edges[edge.id] = edge
                neighbors.append((NodeKind.note, link.note_id))
                neighbors.append((NodeKind.entity, link.entity_id))

        return neighbors

    async def _load_nodes(self, user_id: uuid.UUID, keys: Iterable[NodeKey]) -> List[schemas.GraphNode]:
        keys = list(keys)
        entity_ids = [node_id for kind, node_id in keys if kind == NodeKind.entity]
        note_ids = [node_id for kind, node_id in keys if kind == NodeKind.note]
        nodes: List[schemas.GraphNode] = []
        if entity_ids:
            rows = (await self.db.execute(
                select(models.Entity)
                .where(models.Entity.user_id == user_id)
                .where(models.Entity.id.in_(entity_ids))
                .order_by(models.Entity.created_at)
            )).scalars().all()
            nodes.extend(entity_node(e) for e in rows)
        if note_ids:
            rows = (await self.db.execute(
                select(models.Note)
                .where(models.Note.user_id == user_id)
                .where(models.Note.id.in_(note_ids))
                .order_by(models.Note.created_at)
            )).scalars().all()
            nodes.extend(note_node(n) for n in rows)
        return nodes

    async def get_neighborhood(
        self,
        user_id: uuid.UUID,
        center_id: uuid.UUID,
        center_type: NodeKind,
        levels: int = DEFAULT_LEVELS,
    ) -> schemas.Graph:
        """Breadth-first view around one entity or note, ``levels`` hops deep."""
        if not MIN_LEVELS <= levels <= MAX_LEVELS:
            raise ValidationError(f"levels must be between {MIN_LEVELS} and {MAX_LEVELS}")
        center_type = NodeKind(center_type)
        if not await self._center_exists(user_id, center_id, center_type):
            raise NotFound("Center node not found")

        started = time.perf_counter()
        center: NodeKey = (center_type, center_id)
        visited: List[NodeKey] = [center]
        seen: Set[NodeKey] = {center}
        edges: Dict[str, schemas.GraphEdge] = {}
        frontier = [center]

        for _ in range(levels):
            if not frontier or len(visited) >= MAX_NODES:
                break
            next_frontier: List[NodeKey] = []
            for key in await self._expand(user_id, frontier, edges):
                if key in seen:
                    continue
                if len(visited) >= MAX_NODES:
                    break
                seen.add(key)
                visited.append(key)
                next_frontier.append(key)
            frontier = next_frontier

        nodes = await self._load_nodes(user_id, visited)
        node_ids = {node.id for node in nodes}
        kept_edges = [e for e in edges.values() if e.source in node_ids and e.target in node_ids]

        logger.info(
            "Neighborhood of %s %s: %d nodes, %d edges in %.1f ms",
            center_type.value, center_id, len(nodes), len(kept_edges), (time.perf_counter() - started) * 1000,
        )
        return schemas.Graph(nodes=nodes, edges=kept_edges)
