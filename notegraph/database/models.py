import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base
from .enums import EntityType, RelationshipType, SuggestionStatus, SuggestionType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=32, validate_strings=True)


# Foreign keys below only describe joins for the ORM; no ON DELETE cascades are
# declared. Cascading removals are issued explicitly by the stores.

class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    has_agreed_to_ai_data_processing = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Profile(user_id={self.user_id}, consent={self.has_agreed_to_ai_data_processing})>"


class Entity(Base):
    __tablename__ = "entities"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_entities_user_name"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(_enum(EntityType), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Entity(id={self.id}, name='{self.name}')>"


class Relationship(Base):
    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint("user_id", "source_entity_id", "target_entity_id", name="uq_relationships_user_pair"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source_entity_id = Column(UUID(as_uuid=True), ForeignKey("entities.id"), nullable=False, index=True)
    target_entity_id = Column(UUID(as_uuid=True), ForeignKey("entities.id"), nullable=False, index=True)
    type = Column(_enum(RelationshipType), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<Relationship(id={self.id}, {self.source_entity_id} -{self.type}-> {self.target_entity_id})>"


class Note(Base):
    __tablename__ = "notes"
    __table_args__ = (UniqueConstraint("user_id", "title", name="uq_notes_user_title"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    entity_links = relationship("NoteEntityLink", viewonly=True, order_by="NoteEntityLink.created_at")

    def __repr__(self):
        return f"<Note(id={self.id}, title='{self.title}')>"


class NoteEntityLink(Base):
    __tablename__ = "note_entities"

    note_id = Column(UUID(as_uuid=True), ForeignKey("notes.id"), primary_key=True)
    entity_id = Column(UUID(as_uuid=True), ForeignKey("entities.id"), primary_key=True, index=True)
    type = Column(_enum(RelationshipType), nullable=False, default=RelationshipType.is_related_to)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    entity = relationship("Entity", viewonly=True, lazy="joined")

    def __repr__(self):
        return f"<NoteEntityLink(note_id={self.note_id}, entity_id={self.entity_id})>"


class Suggestion(Base):
    __tablename__ = "ai_suggestions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    # Cleared when the note is deleted; the suggestion is kept for statistics.
    note_id = Column(UUID(as_uuid=True), ForeignKey("notes.id"), nullable=True, index=True)
    type = Column(_enum(SuggestionType), nullable=False)
    status = Column(_enum(SuggestionStatus), nullable=False, default=SuggestionStatus.pending)
    name = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    suggested_entity_id = Column(UUID(as_uuid=True), nullable=True)
    entity_name = Column(String(100), nullable=True)
    entity_type = Column(_enum(EntityType), nullable=True)
    generation_duration_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Suggestion(id={self.id}, type='{self.type}', status='{self.status}')>"


class AIErrorLog(Base):
    __tablename__ = "ai_error_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    model_name = Column(String, nullable=False)
    source_text_hash = Column(String(64), nullable=False)
    error_code = Column(String, nullable=False)
    error_message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
