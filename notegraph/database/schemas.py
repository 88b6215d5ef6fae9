import uuid
import datetime
from typing import Dict, List, Literal

from pydantic import BaseModel, Field, field_validator

from .enums import EdgeKind, EntityType, NodeKind, RelationshipType, SuggestionStatus, SuggestionType


def _strip(value):
    return value.strip() if isinstance(value, str) else value


# --- Shared ---

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit)


# --- Entity Schemas ---

class EntityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: EntityType
    description: str | None = Field(default=None, max_length=1000)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)


class EntityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    type: EntityType | None = None
    description: str | None = Field(default=None, max_length=1000)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)


class Entity(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    type: EntityType
    description: str | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}


class EntityWithCount(Entity):
    note_count: int = 0


class EntitySummary(BaseModel):
    id: uuid.UUID
    name: str
    type: EntityType
    description: str | None = None

    model_config = {"from_attributes": True}


class EntityListParams(BaseModel):
    search: str | None = None
    type: EntityType | None = None
    limit: int = Field(default=50, ge=1, le=100)
    sort: Literal["name", "created_at", "type", "note_count"] = "name"
    order: Literal["asc", "desc"] = "asc"


# --- Relationship Schemas ---

class RelationshipCreate(BaseModel):
    source_entity_id: uuid.UUID
    target_entity_id: uuid.UUID
    type: RelationshipType


class RelationshipUpdate(BaseModel):
    type: RelationshipType


class Relationship(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    source_entity_id: uuid.UUID
    target_entity_id: uuid.UUID
    type: RelationshipType
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class RelationshipWithEntities(Relationship):
    source_entity: EntitySummary
    target_entity: EntitySummary


class RelationshipListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    source_entity_id: uuid.UUID | None = None
    target_entity_id: uuid.UUID | None = None
    type: RelationshipType | None = None


class RelationshipsPage(BaseModel):
    data: List[RelationshipWithEntities]
    pagination: Pagination


# --- Note Schemas ---

class NoteEntityLinkInput(BaseModel):
    entity_id: uuid.UUID
    type: RelationshipType = RelationshipType.is_related_to


def _reject_duplicate_links(links):
    if links is None:
        return links
    seen = set()
    for link in links:
        if link.entity_id in seen:
            raise ValueError(f"Entity {link.entity_id} is listed more than once")
        seen.add(link.entity_id)
    return links


class NoteCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str | None = Field(default=None, max_length=10000)
    entity_links: List[NoteEntityLinkInput] = []

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value):
        return _strip(value)

    @field_validator("entity_links")
    @classmethod
    def unique_links(cls, links):
        return _reject_duplicate_links(links)


class NoteUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    content: str | None = Field(default=None, max_length=10000)
    # None leaves links untouched; a list (even empty) replaces them all.
    entity_links: List[NoteEntityLinkInput] | None = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value):
        return _strip(value)

    @field_validator("entity_links")
    @classmethod
    def unique_links(cls, links):
        return _reject_duplicate_links(links)


class NoteEntityLink(BaseModel):
    note_id: uuid.UUID
    entity_id: uuid.UUID
    type: RelationshipType
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class AddEntityLinkRequest(BaseModel):
    entity_id: uuid.UUID
    type: RelationshipType = RelationshipType.is_related_to


class UpdateEntityLinkRequest(BaseModel):
    type: RelationshipType


class LinkedEntity(Entity):
    link_type: RelationshipType


class Note(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    content: str | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime | None = None
    entities: List[LinkedEntity] = []

    model_config = {"from_attributes": True}


class NoteListParams(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort: Literal["created_at", "updated_at", "title"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
    search: str | None = None
    entity_ids: List[uuid.UUID] = []


class NotesPage(BaseModel):
    data: List[Note]
    pagination: Pagination


class NoteDeleteResult(BaseModel):
    id: uuid.UUID
    removed_entity_ids: List[uuid.UUID] = []


# --- Suggestion Schemas ---

class Suggestion(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    note_id: uuid.UUID | None
    type: SuggestionType
    status: SuggestionStatus
    name: str
    content: str
    suggested_entity_id: uuid.UUID | None = None
    entity_name: str | None = None
    entity_type: EntityType | None = None
    generation_duration_ms: int
    created_at: datetime.datetime
    updated_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}


class SuggestionStatusUpdate(BaseModel):
    status: SuggestionStatus


class AnalyzeNoteResponse(BaseModel):
    note_id: uuid.UUID
    suggestions: List[Suggestion]
    generation_duration_ms: int


class SuggestionsList(BaseModel):
    data: List[Suggestion]


# Shape the AI provider must return; its JSON schema is sent with the request.
class AISuggestion(BaseModel):
    type: SuggestionType
    name: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    suggested_entity_id: uuid.UUID | None = None
    entity_name: str | None = Field(default=None, max_length=100)
    entity_type: EntityType | None = None


class AISuggestionBatch(BaseModel):
    suggestions: List[AISuggestion] = Field(min_length=1, max_length=5)


# --- Profile Schemas ---

class Profile(BaseModel):
    user_id: uuid.UUID
    has_agreed_to_ai_data_processing: bool
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    has_agreed_to_ai_data_processing: bool


# --- Graph Schemas ---

class GraphNode(BaseModel):
    id: uuid.UUID
    kind: NodeKind
    label: str
    entity_type: EntityType | None = None
    description: str | None = None
    note_preview: str | None = None
    created_at: datetime.datetime | None = None


class GraphEdge(BaseModel):
    id: str
    kind: EdgeKind
    source: uuid.UUID
    target: uuid.UUID
    type: RelationshipType


class Graph(BaseModel):
    nodes: List[GraphNode] = []
    edges: List[GraphEdge] = []


# --- Statistics Schemas ---

class NoteStats(BaseModel):
    total: int
    created_this_period: int


class EntityStats(BaseModel):
    total: int
    by_type: Dict[EntityType, int]


class RelationshipStats(BaseModel):
    total: int
    by_type: Dict[RelationshipType, int]


class SuggestionTypeStats(BaseModel):
    generated: int = 0
    accepted: int = 0
    acceptance_rate: float = 0.0


class SuggestionStats(BaseModel):
    total_generated: int
    total_accepted: int
    total_rejected: int
    acceptance_rate: float
    by_type: Dict[SuggestionType, SuggestionTypeStats]


class Statistics(BaseModel):
    period: Literal["all", "week", "month", "year"]
    notes: NoteStats
    entities: EntityStats
    relationships: RelationshipStats
    ai_suggestions: SuggestionStats
