from enum import Enum


class EntityType(str, Enum):
    person = "person"
    work = "work"
    epoch = "epoch"
    idea = "idea"
    school = "school"
    system = "system"
    other = "other"


class RelationshipType(str, Enum):
    criticizes = "criticizes"
    is_student_of = "is_student_of"
    expands_on = "expands_on"
    influenced_by = "influenced_by"
    is_example_of = "is_example_of"
    is_related_to = "is_related_to"


class SuggestionType(str, Enum):
    quote = "quote"
    summary = "summary"
    new_entity = "new_entity"
    existing_entity_link = "existing_entity_link"


class SuggestionStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class NodeKind(str, Enum):
    entity = "entity"
    note = "note"


class EdgeKind(str, Enum):
    note_entity = "note_entity"
    relationship = "relationship"
