"""
engine/models/wire.py -- Transfer types for the REST backend and the
mapping layer between them and the client models.

The server speaks a slightly different vocabulary from the client:

    client                          wire
    ------------------------------  ------------------------------
    Character.description           quickDescription
    Character.biography             fullBio
    Relationship.target_character_id  characterId
    Relationship.relationship_type  type
    BookMetadata.themes (list)      metadata.themes (comma string)
    <model>.id                      _id
    epoch-ms timestamps             ISO-8601 strings (or numbers)

Each endpoint body is validated into an explicit pydantic model before it
reaches the core.  The only lenient step is ``parse_relationships``, which
accepts stringified arrays (and the concatenated-string garbage some old
clients produced) and falls back to an empty list instead of failing.

Usage::

    from engine.models.wire import character_from_wire, character_to_wire

    body = character_to_wire(character)
    character = character_from_wire(response_json)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from engine.models.book import (
    Book,
    BookMetadata,
    Chapter,
    ChapterSection,
    ChapterVersion,
    Character,
    CharacterRelationship,
    CharacterType,
    ProjectSettings,
)
from engine.utils import now_ms

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lenient decoders
# ------------------------------------------------------------------

# A JS string literal in single or double quotes, with escapes.
_JS_LITERAL_RE = re.compile(r"'((?:[^'\\]|\\.)*)'" r'|"((?:[^"\\]|\\.)*)"', re.DOTALL)
_CONCAT_RE = re.compile(r"['\"]\s*\+\s*(?:$|['\"])", re.MULTILINE)


def _unconcatenate(text: str) -> str:
    """Join the literal pieces of ``'a' +\\n 'b'`` style source text."""
    pieces = []
    for single, double in _JS_LITERAL_RE.findall(text):
        piece = single if single else double
        pieces.append(piece.replace("\\n", "\n").replace("\\'", "'").replace('\\"', '"'))
    return "".join(pieces)


def parse_relationships(raw: Any) -> list[dict[str, str]]:
    """Decode a relationships field into a list of wire-shaped dicts.

    Accepts a list, a JSON string holding a list, or a string of
    concatenated JS literals that together spell a JSON list.  Anything
    else decodes to ``[]``.  Entries that are not objects are dropped and
    every kept field is coerced to ``str``.
    """
    if raw is None:
        return []

    value = raw
    if isinstance(raw, str):
        text = raw.strip()
        if _CONCAT_RE.search(text):
            text = _unconcatenate(text).strip()
        start, end = text.find("["), text.rfind("]")
        if start == -1 or end <= start:
            logger.warning("Relationships string is not a JSON array; using []")
            return []
        try:
            value = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            logger.warning("Could not decode relationships string; using []")
            return []

    if not isinstance(value, list):
        logger.warning("Relationships value is %s, not a list; using []", type(value).__name__)
        return []

    result = []
    for rel in value:
        if isinstance(rel, BaseModel):
            rel = rel.model_dump(by_alias=True)
        if not isinstance(rel, dict):
            continue
        result.append({
            "characterId": str(rel.get("characterId") or rel.get("targetCharacterId") or ""),
            "type": str(rel.get("type") or rel.get("relationshipType") or ""),
            "description": str(rel.get("description") or ""),
        })
    return result


def to_epoch_ms(value: Any) -> Optional[int]:
    """Convert an ISO string, datetime or number to epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _parse_age(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _split_themes(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in str(value).split(",") if t.strip()]


# ------------------------------------------------------------------
# Transfer types
# ------------------------------------------------------------------

class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class RelationshipWire(WireModel):
    character_id: str = ""
    type: str = ""
    description: str = ""


class CharacterWire(WireModel):
    id: str = Field(default="", alias="_id")
    name: str = ""
    type: CharacterType = "main"
    quick_description: str = ""
    full_bio: str = ""
    character_arc: Optional[str] = None
    age: Optional[str] = None
    role: Optional[str] = None
    relationships: list[RelationshipWire] = Field(default_factory=list)
    is_locked: bool = False
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_field_names(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("quickDescription") and data.get("description"):
                data["quickDescription"] = data["description"]
            if not data.get("fullBio") and data.get("biography"):
                data["fullBio"] = data["biography"]
        return data

    @field_validator("relationships", mode="before")
    @classmethod
    def _decode_relationships(cls, value: Any) -> list[dict[str, str]]:
        return parse_relationships(value)

    @field_validator("age", mode="before")
    @classmethod
    def _age_as_string(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _timestamps(cls, value: Any) -> Optional[int]:
        return to_epoch_ms(value)


class ChapterVersionWire(WireModel):
    content: str = ""
    title: str = ""
    timestamp: Optional[int] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Optional[int]:
        return to_epoch_ms(value)


class ChapterWire(WireModel):
    id: str = Field(default="", alias="_id")
    title: str = ""
    content: str = ""
    synopsis: Optional[str] = None
    notes: Optional[str] = None
    order: int = 0
    word_count: int = 0
    is_locked: bool = False
    versions: list[ChapterVersionWire] = Field(default_factory=list)
    sections: list[dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, value: Any) -> str:
        return value or ""

    @field_validator("word_count", mode="before")
    @classmethod
    def _word_count(cls, value: Any) -> int:
        return value or 0

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _timestamps(cls, value: Any) -> Optional[int]:
        return to_epoch_ms(value)


class MetadataWire(WireModel):
    title: str = ""
    subtitle: Optional[str] = None
    author: str = ""
    genre: Optional[str] = None
    synopsis: Optional[str] = None
    themes: Optional[str] = None
    target_word_count: Optional[int] = None

    @field_validator("themes", mode="before")
    @classmethod
    def _themes(cls, value: Any) -> Optional[str]:
        if isinstance(value, list):
            return ", ".join(str(t) for t in value)
        return value


class SettingsWire(WireModel):
    ai_provider: Optional[str] = None
    ai_model: Optional[str] = None
    ai_api_key: Optional[str] = None


class ProjectWire(WireModel):
    id: str = Field(default="", alias="_id")
    name: str = ""
    metadata: MetadataWire = Field(default_factory=MetadataWire)
    settings: Optional[SettingsWire] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value: Any) -> Any:
        return value or {}

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _timestamps(cls, value: Any) -> Optional[int]:
        return to_epoch_ms(value)


def _timestamps_kwargs(created_at: Optional[int], updated_at: Optional[int]) -> dict[str, int]:
    kwargs = {}
    if created_at is not None:
        kwargs["created_at"] = created_at
    if updated_at is not None:
        kwargs["updated_at"] = updated_at
    return kwargs


# ------------------------------------------------------------------
# Characters
# ------------------------------------------------------------------

def character_to_wire(character: Character) -> dict[str, Any]:
    """Encode a client Character as a request body."""
    wire = CharacterWire(
        id=character.id,
        name=character.name,
        type=character.type,
        quick_description=character.description,
        full_bio=character.biography,
        character_arc=character.character_arc,
        age=None if character.age is None else str(character.age),
        role=character.role,
        relationships=[
            RelationshipWire(
                character_id=rel.target_character_id,
                type=rel.relationship_type,
                description=rel.description,
            )
            for rel in character.relationships
        ],
        is_locked=character.is_locked,
        created_at=character.created_at,
        updated_at=character.updated_at,
    )
    return wire.model_dump(mode="json", by_alias=True)


def character_from_wire(payload: dict[str, Any]) -> Character:
    """Decode a server character document into a client Character."""
    wire = CharacterWire.model_validate(payload)
    return Character(
        id=wire.id,
        name=wire.name,
        type=wire.type,
        description=wire.quick_description,
        biography=wire.full_bio,
        character_arc=wire.character_arc,
        age=_parse_age(wire.age),
        role=wire.role,
        relationships=[
            CharacterRelationship(
                target_character_id=rel.character_id,
                relationship_type=rel.type,
                description=rel.description,
            )
            for rel in wire.relationships
        ],
        is_locked=wire.is_locked,
        **_timestamps_kwargs(wire.created_at, wire.updated_at),
    )


# ------------------------------------------------------------------
# Chapters
# ------------------------------------------------------------------

def chapter_to_wire(chapter: Chapter) -> dict[str, Any]:
    wire = ChapterWire(
        id=chapter.id,
        title=chapter.title,
        content=chapter.content,
        synopsis=chapter.synopsis,
        notes=chapter.notes,
        order=chapter.order,
        word_count=chapter.word_count,
        is_locked=chapter.is_locked,
        versions=[
            ChapterVersionWire(content=v.content, title=v.title, timestamp=v.timestamp)
            for v in chapter.versions
        ],
        sections=[s.to_json_dict() for s in chapter.sections],
        created_at=chapter.created_at,
        updated_at=chapter.updated_at,
    )
    return wire.model_dump(mode="json", by_alias=True)


def chapter_from_wire(payload: dict[str, Any]) -> Chapter:
    wire = ChapterWire.model_validate(payload)
    return Chapter(
        id=wire.id,
        title=wire.title,
        content=wire.content,
        synopsis=wire.synopsis,
        notes=wire.notes,
        order=wire.order,
        word_count=wire.word_count,
        is_locked=wire.is_locked,
        versions=[
            ChapterVersion(content=v.content, title=v.title, timestamp=v.timestamp or now_ms())
            for v in wire.versions
        ],
        sections=[ChapterSection.model_validate(s) for s in wire.sections],
        **_timestamps_kwargs(wire.created_at, wire.updated_at),
    )


# ------------------------------------------------------------------
# Projects
# ------------------------------------------------------------------

def project_to_wire(metadata: BookMetadata, settings: ProjectSettings | None) -> dict[str, Any]:
    """Build the body for ``POST /projects`` and ``PUT /projects/:id``."""
    body: dict[str, Any] = {
        "name": metadata.title or "Untitled",
        "metadata": MetadataWire(
            title=metadata.title,
            subtitle=metadata.subtitle,
            author=metadata.author,
            genre=metadata.genre,
            synopsis=metadata.synopsis,
            themes=", ".join(metadata.themes) if metadata.themes else None,
            target_word_count=metadata.target_word_count,
        ).model_dump(mode="json", by_alias=True),
    }
    if settings is not None:
        body["settings"] = SettingsWire(
            ai_provider=settings.ai_provider,
            ai_model=settings.ai_model,
            ai_api_key=settings.ai_api_key,
        ).model_dump(mode="json", by_alias=True)
    return body


def project_from_wire(payload: dict[str, Any]) -> Book:
    """Decode a project document; characters and chapters come separately."""
    wire = ProjectWire.model_validate(payload)
    meta = wire.metadata
    settings = None
    if wire.settings is not None:
        provider = wire.settings.ai_provider
        settings = ProjectSettings(
            ai_provider=provider if provider in ("openai", "anthropic") else None,
            ai_model=wire.settings.ai_model,
            ai_api_key=wire.settings.ai_api_key,
        )
    return Book(
        id=wire.id,
        metadata=BookMetadata(
            title=meta.title or "Untitled",
            subtitle=meta.subtitle,
            author=meta.author or "",
            genre=meta.genre or "",
            synopsis=meta.synopsis,
            themes=_split_themes(meta.themes),
            target_word_count=meta.target_word_count,
        ),
        settings=settings,
        **_timestamps_kwargs(wire.created_at, wire.updated_at),
    )
